"""
Analysis Executor

Runs a static analyzer (CodeChecker by default) one process at a time.

Features:
- Single active process, queued work drains automatically
- Append, prepend and replace insertion policies
- Stop by process kind (analyze, log, ...)
- Line-by-line output and completion events
- Per-run timeouts
- Run history
"""

from executor.bridge import ConfigurationMissing, ExecutorBridge
from executor.config import ExecutorConfig
from executor.execution_queue import ExecutionQueue
from executor.jobs import HistoryStore, ProcessHandle, ProcessRunner, SpawnError
from executor.models import (
    OutcomeKind,
    OutputLine,
    ProcessKind,
    ProcessOutcome,
    ProcessResult,
    QueuePolicy,
    ScheduledProcess,
)
from executor.service import ExecutorManager

__version__ = "0.1.0"
__all__ = [
    "ConfigurationMissing",
    "ExecutionQueue",
    "ExecutorBridge",
    "ExecutorConfig",
    "ExecutorManager",
    "HistoryStore",
    "OutcomeKind",
    "OutputLine",
    "ProcessHandle",
    "ProcessKind",
    "ProcessOutcome",
    "ProcessResult",
    "ProcessRunner",
    "QueuePolicy",
    "ScheduledProcess",
    "SpawnError",
]
