import sys
import logging
import logging.handlers
from pathlib import Path
from typing import Optional, Dict, Any

# Ensure `src/` is on sys.path so we can import our package during development
sys.path.insert(0, str(Path(__file__).resolve().parent.joinpath("src")))

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from datetime import datetime, timezone

from horizon_agent.engine import ExecutionEngine
from horizon_agent.errors import ConfigurationError, SnapshotError, StateSyncError, UpdateInProgressError
from horizon_agent.live_update import LiveUpdateOptions
from horizon_agent.models import ConfigurationSnapshot
from horizon_agent.settings import AgentSettings


# Configure logging
def setup_logging(log_dir: Path):
    """Configure colored console and file logging."""

    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(_ColoredFormatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    logger.addHandler(console_handler)

    # File handler (rotating to prevent huge logs)
    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / "horizon-agent.log",
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    logger.addHandler(file_handler)

    return logger


class _ColoredFormatter(logging.Formatter):
    """Custom formatter with ANSI color codes."""

    COLORS = {
        "DEBUG": "\033[36m",      # Cyan
        "INFO": "\033[32m",       # Green
        "WARNING": "\033[33m",    # Yellow
        "ERROR": "\033[31m",      # Red
        "CRITICAL": "\033[35m",   # Magenta
    }
    RESET = "\033[0m"

    def format(self, record):
        # Color a copy so the file handler still gets the plain level name
        record = logging.makeLogRecord(record.__dict__)
        log_color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{log_color}{record.levelname}{self.RESET}"
        return super().format(record)


settings = AgentSettings.from_env()
logger = setup_logging(settings.log_dir)
logger.info("Horizon Agent server starting...")

app = FastAPI(title="Horizon Agent API", version="1.0.0")


class ReconcileRequest(BaseModel):
    target: Dict[str, Any]
    current: Optional[Dict[str, Any]] = None  # defaults to the last applied configuration
    allow_partial_update: bool = True
    dry_run: bool = False


class PlanRequest(BaseModel):
    target: Dict[str, Any]
    current: Optional[Dict[str, Any]] = None


class DeployRequest(BaseModel):
    target: Dict[str, Any]
    dry_run: bool = False


@app.on_event("startup")
def _init_engine():
    """Build the ExecutionEngine from HORIZON_* settings and attach to app.state."""
    if getattr(app.state, "engine", None) is not None:
        return
    try:
        logger.info(f"Initializing engine (config root {settings.config_root})")
        app.state.engine = ExecutionEngine.from_settings(settings)
        logger.info("Engine initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize engine: {e}", exc_info=True)
        raise


def _engine() -> ExecutionEngine:
    return app.state.engine


def _parse(document: Optional[Dict[str, Any]]) -> Optional[ConfigurationSnapshot]:
    if document is None:
        return None
    try:
        return ConfigurationSnapshot.from_dict(document)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/health")
async def health():
    logger.debug("Health check requested")
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# Reconciliation Endpoints

@app.post("/api/reconcile")
def reconcile(request: ReconcileRequest):
    """Live-update the running system towards `target`.

    The response carries `outcome` and `exit_code` (0 success,
    2 reboot required, 1 failure).
    """
    target = _parse(request.target)
    current = _parse(request.current)
    options = LiveUpdateOptions(
        allow_partial_update=request.allow_partial_update,
        dry_run=request.dry_run,
    )
    try:
        result = _engine().reconcile(current, target, options)
    except UpdateInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StateSyncError as e:
        logger.error(f"Cannot load last applied configuration: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    logger.info(f"Reconcile finished: {result.outcome}")
    return result.to_dict()


@app.post("/api/reconcile/plan")
def plan(request: PlanRequest):
    """Classify the changes without applying anything."""
    target = _parse(request.target)
    current = _parse(request.current)
    try:
        return _engine().can_reconcile(current, target).to_dict()
    except StateSyncError as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/validate")
def validate(request: DeployRequest):
    target = _parse(request.target)
    return _engine().validate_configuration(target, dry_run=request.dry_run).to_dict()


@app.post("/api/deploy")
def deploy(request: DeployRequest):
    """Full deployment: validate, apply, commit and stage for next boot."""
    target = _parse(request.target)
    try:
        result = _engine().deploy_full(target, dry_run=request.dry_run)
    except UpdateInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info(f"Deploy finished: {result.outcome}")
    return result.to_dict()


@app.post("/api/rollback/{commit_id}")
def rollback(commit_id: str):
    result = _engine().rollback_to(commit_id)
    return result.to_dict()


# Snapshot Endpoints

@app.get("/api/snapshots")
def list_snapshots():
    snapshots = _engine().list_snapshots()
    return {"ok": True, "snapshots": [s.to_dict() for s in snapshots]}


@app.post("/api/snapshots/{snapshot_id}/restore")
def restore_snapshot(snapshot_id: str):
    engine = _engine()
    if snapshot_id not in {s.id for s in engine.list_snapshots()}:
        logger.warning(f"Snapshot not found: {snapshot_id}")
        raise HTTPException(status_code=404, detail=f"Snapshot not found: {snapshot_id}")
    try:
        config = engine.restore_snapshot(snapshot_id)
    except UpdateInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SnapshotError as e:
        logger.error(f"Failed to restore snapshot {snapshot_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    return {"ok": True, "snapshot_id": snapshot_id, "config": config.to_dict() if config else None}


# Status Endpoints

@app.get("/api/status")
def status():
    return _engine().status().to_dict()


@app.get("/api/config/current")
def current_config():
    try:
        return _engine().last_applied_config().to_dict()
    except StateSyncError as e:
        raise HTTPException(status_code=500, detail=str(e))


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting Horizon Agent server on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
