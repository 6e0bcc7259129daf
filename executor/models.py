"""
Data models for scheduled analyzer runs.

A ScheduledProcess describes one external command invocation. It is
immutable: the queue and the driver hand the same object around, they
never copy or mutate it.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ProcessKind(str, Enum):
    """Category of a scheduled run, used for selective stop/clear."""
    ANALYZE = 'analyze'
    LOG = 'log'
    VERSION = 'version'
    OTHER = 'other'


class QueuePolicy(str, Enum):
    """Where a submitted process lands in the pending queue."""
    APPEND = 'append'
    PREPEND = 'prepend'
    REPLACE = 'replace'


class OutcomeKind(str, Enum):
    EXITED = 'exited'
    SIGNALED = 'signaled'
    CANCELLED = 'cancelled'
    SPAWN_FAILED = 'spawn_failed'


def _new_process_id() -> str:
    return str(uuid.uuid4())[:8]


@dataclass(frozen=True)
class ScheduledProcess:
    """
    One external command invocation, waiting or running.

    command_line is split with POSIX shell rules when the process is
    started; it is never handed to a shell.
    """
    command_line: str
    kind: ProcessKind = ProcessKind.OTHER
    working_dir: Optional[str] = None
    timeout: Optional[float] = None  # seconds, cancels the run when exceeded
    process_id: str = field(default_factory=_new_process_id)

    @property
    def label(self) -> str:
        """Log prefix identifying this run."""
        return f"[{self.kind.value}:{self.process_id}]"


@dataclass(frozen=True)
class OutputLine:
    """A single line of child output. text always ends with a newline."""
    stream: str  # 'stdout' or 'stderr'
    text: str
    process: ScheduledProcess


@dataclass(frozen=True)
class ProcessOutcome:
    """How a run ended."""
    kind: OutcomeKind
    exit_code: Optional[int] = None
    signal: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def exited(cls, code: int) -> 'ProcessOutcome':
        return cls(OutcomeKind.EXITED, exit_code=code)

    @classmethod
    def signaled(cls, signum: int) -> 'ProcessOutcome':
        return cls(OutcomeKind.SIGNALED, signal=signum)

    @classmethod
    def cancelled(cls) -> 'ProcessOutcome':
        return cls(OutcomeKind.CANCELLED)

    @classmethod
    def spawn_failed(cls, error: str) -> 'ProcessOutcome':
        return cls(OutcomeKind.SPAWN_FAILED, error=error)

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.EXITED and self.exit_code == 0

    @property
    def status(self) -> str:
        """Status label stored in the run history."""
        if self.succeeded:
            return 'success'
        if self.kind in (OutcomeKind.EXITED, OutcomeKind.SIGNALED):
            return 'failed'
        return self.kind.value

    def __str__(self):
        if self.kind is OutcomeKind.EXITED:
            return f"exited with code {self.exit_code}"
        if self.kind is OutcomeKind.SIGNALED:
            return f"killed by signal {self.signal}"
        if self.kind is OutcomeKind.SPAWN_FAILED:
            return f"failed to start: {self.error}"
        return "cancelled"


@dataclass(frozen=True)
class ProcessResult:
    """Payload of the completion channel."""
    process: ScheduledProcess
    outcome: ProcessOutcome
