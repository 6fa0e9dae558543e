import json
import os
from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path


def _default(obj):
    if is_dataclass(obj):
        return asdict(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    if isinstance(obj, Path):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def json_dumps(obj, normalize: bool = False) -> str:
    """Return a JSON string.

    By default keys keep insertion order so documents read the way they
    were built. Set `normalize=True` for content that gets hashed or
    committed, where byte-stable output matters.
    """
    if normalize:
        return json.dumps(
            obj, sort_keys=True, indent=2, separators=(",", ": "),
            ensure_ascii=False, default=_default,
        )
    return json.dumps(
        obj, indent=2, separators=(",", ": "), ensure_ascii=False, default=_default
    )


def atomic_write_text(path: Path, text: str) -> None:
    """Write text atomically to avoid partial files.

    Writes to a temp file, fsyncs, then renames into place.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())
    tmp.replace(path)


def atomic_write_json(path: Path, obj, normalize: bool = False) -> None:
    """Write JSON atomically to avoid partial files."""
    atomic_write_text(path, json_dumps(obj, normalize=normalize))


def read_json(path: Path):
    with path.open(encoding="utf-8") as f:
        return json.load(f)
