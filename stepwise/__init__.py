"""Stepwise: linear workflow execution with a concurrency-limited job queue."""

from .brokers import BaseBroker, InMemoryBroker, get_broker
from .context import VariableContext
from .contracts import EnqueueResult, Job, QueueStats, Run, Step, Workflow
from .execute import ExecutionResult, StepExecutor
from .extraction import OutputExtractor, extract_output
from .persistence import get_repository
from .queue import ExecutionQueue
from .registry import ModuleRegistry
from .runner import WorkflowRunner
from .templates import resolve_template
from .workflows import FileWorkflowStore, InMemoryWorkflowStore

__version__ = "0.1.0"
__all__ = [
    "BaseBroker",
    "EnqueueResult",
    "ExecutionQueue",
    "ExecutionResult",
    "FileWorkflowStore",
    "InMemoryBroker",
    "InMemoryWorkflowStore",
    "Job",
    "ModuleRegistry",
    "OutputExtractor",
    "QueueStats",
    "Run",
    "Step",
    "StepExecutor",
    "VariableContext",
    "Workflow",
    "WorkflowRunner",
    "extract_output",
    "get_broker",
    "get_repository",
    "resolve_template",
]
