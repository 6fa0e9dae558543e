"""Automation commands: workflow documents and the automation service.

Each workflow is one JSON document in the workflows directory; the
`horizonos-automation` unit picks changes up on reload.
"""

from pathlib import Path

from ..json_utils import atomic_write_json
from ..models import AutomationConfig, Workflow, validate_workflow_name
from . import Command, CommandExecutor

AUTOMATION_UNIT = "horizonos-automation"


def workflow_document(workflows_dir: Path, name: str) -> Path:
    """Path of a workflow document; the name must not leave `workflows_dir`."""
    return workflows_dir / f"{validate_workflow_name(name)}.json"


class UpdateWorkflow(Command):
    def __init__(self, workflow: Workflow, workflows_dir: Path, executor: CommandExecutor):
        super().__init__("automation:update", executor)
        self.workflow = workflow
        self.workflows_dir = Path(workflows_dir)

    def describe(self) -> str:
        return f"update automation workflow {self.workflow.name}"

    def _apply(self) -> None:
        atomic_write_json(workflow_document(self.workflows_dir, self.workflow.name), self.workflow.to_dict())
        self._run("systemctl", "reload-or-restart", AUTOMATION_UNIT)


class RemoveWorkflow(Command):
    def __init__(self, workflow_name: str, workflows_dir: Path, executor: CommandExecutor):
        super().__init__("automation:remove", executor)
        self.workflow_name = workflow_name
        self.workflows_dir = Path(workflows_dir)

    def describe(self) -> str:
        return f"remove automation workflow {self.workflow_name}"

    def _apply(self) -> None:
        document = workflow_document(self.workflows_dir, self.workflow_name)
        if document.exists():
            document.unlink()
        self._run("systemctl", "reload-or-restart", AUTOMATION_UNIT)


class ConfigureAutomation(Command):
    """Write every workflow and (re)start the automation service."""

    def __init__(self, automation: AutomationConfig, workflows_dir: Path, executor: CommandExecutor):
        super().__init__("automation:configure", executor)
        self.automation = automation
        self.workflows_dir = Path(workflows_dir)

    def describe(self) -> str:
        return f"configure {len(self.automation.workflows)} automation workflows"

    def _apply(self) -> None:
        documents = [(w, workflow_document(self.workflows_dir, w.name)) for w in self.automation.workflows]
        wanted = {path.name for _, path in documents}
        if self.workflows_dir.exists():
            for stale in self.workflows_dir.glob("*.json"):
                if stale.name not in wanted:
                    stale.unlink()
        for workflow, path in documents:
            atomic_write_json(path, workflow.to_dict())
        self._run("systemctl", "enable", "--now", AUTOMATION_UNIT)
        self._run("systemctl", "reload-or-restart", AUTOMATION_UNIT)
