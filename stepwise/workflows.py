"""Workflow definition lookup."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

import yaml

from .contracts import Workflow
from .errors import WorkflowNotFound

logger = logging.getLogger(__name__)

WORKFLOW_SUFFIXES = (".yaml", ".yml", ".json")


class WorkflowStore(Protocol):
    """Source of workflow definitions referenced by id."""

    async def get_workflow(self, workflow_id: str, user_id: Optional[str] = None) -> Workflow:
        """Return the workflow or raise ``WorkflowNotFound``."""

    async def list_workflows(self) -> List[Workflow]:
        """Return every known workflow."""


def parse_workflow(data: Mapping[str, Any], default_id: Optional[str] = None) -> Workflow:
    """Build a :class:`Workflow` from a stored definition.

    Definitions may keep ``steps``, ``returnValue`` and ``outputDisplay`` at
    the top level or nested under ``config``.
    """
    merged: Dict[str, Any] = {k: v for k, v in data.items() if k != "config"}
    config = data.get("config")
    if isinstance(config, str):
        config = json.loads(config)
    if isinstance(config, Mapping):
        for key, value in config.items():
            merged.setdefault(key, value)
    if "id" not in merged:
        if default_id is None:
            raise ValueError("Workflow definition has no id")
        merged["id"] = default_id
    return Workflow.model_validate(merged)


def load_workflow_file(path: str | Path) -> Workflow:
    """Load a workflow from a YAML or JSON file; the file stem is the default id."""
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        if path.suffix == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f) or {}
    if not isinstance(data, Mapping):
        raise ValueError(f"Workflow file {path} must contain a mapping")
    return parse_workflow(data, default_id=path.stem)


def _check_owner(workflow: Workflow, user_id: Optional[str]) -> None:
    if user_id is not None and workflow.user_id is not None and workflow.user_id != user_id:
        raise WorkflowNotFound(workflow.id, user_id)


class InMemoryWorkflowStore(WorkflowStore):
    """Keep workflow definitions in a local dict."""

    def __init__(self, workflows: Iterable[Workflow] = ()) -> None:
        self._workflows: Dict[str, Workflow] = {}
        for workflow in workflows:
            self.add(workflow)

    def add(self, workflow: Workflow) -> None:
        self._workflows[workflow.id] = workflow

    async def get_workflow(self, workflow_id: str, user_id: Optional[str] = None) -> Workflow:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(workflow_id, user_id)
        _check_owner(workflow, user_id)
        return workflow

    async def list_workflows(self) -> List[Workflow]:
        return list(self._workflows.values())


class FileWorkflowStore(WorkflowStore):
    """Read workflow definitions from YAML/JSON files in a directory.

    Files are re-read on every lookup so edits take effect on the next run.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _iter_files(self) -> List[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(
            p for p in self.directory.iterdir() if p.is_file() and p.suffix in WORKFLOW_SUFFIXES
        )

    def _load_all(self) -> List[Workflow]:
        workflows: List[Workflow] = []
        for path in self._iter_files():
            try:
                workflows.append(load_workflow_file(path))
            except (OSError, ValueError, yaml.YAMLError) as exc:
                logger.warning(f"Skipping workflow file {path}: {exc}")
        return workflows

    async def get_workflow(self, workflow_id: str, user_id: Optional[str] = None) -> Workflow:
        for workflow in self._load_all():
            if workflow.id == workflow_id:
                _check_owner(workflow, user_id)
                return workflow
        raise WorkflowNotFound(workflow_id, user_id)

    async def list_workflows(self) -> List[Workflow]:
        return self._load_all()
