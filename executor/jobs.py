"""
Child process execution for scheduled analyzer runs.

ProcessRunner starts one ScheduledProcess as a child process and returns a
ProcessHandle exposing its output as a line stream and its end as a single
completion outcome. HistoryStore keeps a JSON record of finished runs.
"""

import asyncio
import json
import logging
import os
import shlex
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

from executor.models import OutputLine, ProcessOutcome, ScheduledProcess

logger = logging.getLogger(__name__)

# Maximum length of a single output line before it is dropped
LINE_LIMIT = 1024 * 1024


def _get_data_dir() -> Path:
    data_dir = os.environ.get('EXECUTOR_DATA_DIR')
    if data_dir:
        return Path(data_dir).expanduser()
    return Path.home() / ".analysis_executor"


def _get_history_file_path() -> Path:
    """Get the path to the run history file."""
    history_path = os.environ.get('EXECUTOR_HISTORY_FILE')
    if history_path:
        return Path(history_path).expanduser()
    return _get_data_dir() / "history.json"


class HistoryStore:
    """
    JSON file of analyzer runs, newest last on disk.

    A record is created when a run starts (status 'running') and completed
    from its ProcessOutcome when it ends. Records carry:
    - run_id, kind, command, working_dir
    - start_time / end_time (ISO) and elapsed_seconds
    - status: 'running', 'success', 'failed', 'cancelled' or 'spawn_failed'
    - outcome: 'exited', 'signaled', 'cancelled' or 'spawn_failed'
    - exit_code / signal: whichever applies
    - error: spawn error, signal or timeout description
    """

    def __init__(self, history_file: Optional[Path] = None, max_entries: int = 1000):
        """
        Args:
            history_file: Path to the JSON file (EXECUTOR_HISTORY_FILE or the
                data dir default if not specified)
            max_entries: Oldest records beyond this count are dropped
        """
        self.history_file = Path(history_file) if history_file else _get_history_file_path()
        self.max_entries = max_entries
        self.history_file.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> List[Dict[str, Any]]:
        if not self.history_file.exists():
            return []
        try:
            with open(self.history_file, 'r') as f:
                records = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"Unreadable history file {self.history_file}, starting over: {e}")
            return []
        return records if isinstance(records, list) else []

    def _store(self, records: List[Dict[str, Any]]):
        with open(self.history_file, 'w') as f:
            json.dump(records[-self.max_entries:], f, indent=2, default=str)

    def start_run(self, process: ScheduledProcess, start_time: datetime):
        """Record a run that is about to be spawned."""
        records = self._load()
        records.append({
            'run_id': process.process_id,
            'kind': process.kind.value,
            'command': process.command_line,
            'working_dir': process.working_dir,
            'start_time': start_time.isoformat(),
            'end_time': None,
            'elapsed_seconds': None,
            'status': 'running',
            'outcome': None,
            'exit_code': None,
            'signal': None,
            'error': None,
        })
        self._store(records)

    def finish_run(
        self,
        process: ScheduledProcess,
        outcome: ProcessOutcome,
        end_time: datetime,
        error: Optional[str] = None
    ):
        """
        Complete the record of a run from its outcome.

        Args:
            process: The run that ended
            outcome: How it ended
            end_time: When it ended
            error: Overrides the outcome's own error text (timeouts)
        """
        records = self._load()
        record = next((r for r in reversed(records) if r.get('run_id') == process.process_id), None)
        if record is None:
            logger.debug(f"{process.label} No start record, history not updated")
            return

        started = datetime.fromisoformat(record['start_time'])
        if error is None:
            error = outcome.error if outcome.signal is None else str(outcome)
        record.update({
            'end_time': end_time.isoformat(),
            'elapsed_seconds': round((end_time - started).total_seconds(), 2),
            'status': outcome.status,
            'outcome': outcome.kind.value,
            'exit_code': outcome.exit_code,
            'signal': outcome.signal,
            'error': error,
        })
        self._store(records)

    def get_history(
        self,
        kind: Optional[str] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Records matching kind and status, most recent first."""
        records = [
            r for r in self._load()
            if (not kind or r.get('kind') == kind) and (not status or r.get('status') == status)
        ]
        records.sort(key=lambda r: r.get('start_time') or '', reverse=True)
        return records[:limit] if limit else records

    def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        return next((r for r in self._load() if r.get('run_id') == run_id), None)

    def summary(self) -> Dict[str, Dict[str, int]]:
        """Count runs per kind and status, e.g. {'analyze': {'success': 3, 'cancelled': 1}}."""
        counts: Dict[str, Dict[str, int]] = {}
        for record in self._load():
            per_kind = counts.setdefault(record.get('kind') or 'unknown', {})
            status = record.get('status') or 'unknown'
            per_kind[status] = per_kind.get(status, 0) + 1
        return counts

    def clear_history(self, kind: Optional[str] = None):
        """Drop every record, or only those of one process kind."""
        self._store([r for r in self._load() if kind and r.get('kind') != kind])


class SpawnError(Exception):
    """Raised when the OS cannot create the child process."""

    def __init__(self, process: ScheduledProcess, error):
        self.process = process
        self.error = error
        super().__init__(f"Could not start '{process.command_line}': {error}")


class ProcessHandle:
    """
    Handle to a running child process.

    Created by ProcessRunner.start(). The handle reads both output pipes in
    the background; output() yields the lines, wait() resolves once with the
    outcome.
    """

    def __init__(
        self,
        process: ScheduledProcess,
        child: asyncio.subprocess.Process,
        kill_timeout: Optional[float] = None
    ):
        self.process = process
        self.started_at = datetime.now()
        self._child = child
        self._kill_timeout = kill_timeout
        self._kill_timer: Optional[asyncio.TimerHandle] = None
        self._cancel_requested = False
        self._output_taken = False
        self._loop = asyncio.get_running_loop()
        self._lines: asyncio.Queue = asyncio.Queue()
        self._completed: asyncio.Future = self._loop.create_future()
        self._pumps = [
            self._loop.create_task(self._pump(child.stdout, 'stdout')),
            self._loop.create_task(self._pump(child.stderr, 'stderr')),
        ]
        self._supervisor = self._loop.create_task(self._supervise())

    @property
    def pid(self) -> int:
        return self._child.pid

    @property
    def running(self) -> bool:
        return self._child.returncode is None

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    @property
    def outcome(self) -> Optional[ProcessOutcome]:
        """The completion outcome, or None while the process is not done."""
        if self._completed.done() and not self._completed.exception():
            return self._completed.result()
        return None

    async def _pump(self, stream: asyncio.StreamReader, origin: str):
        try:
            while True:
                try:
                    raw = await stream.readline()
                except ValueError as e:
                    logger.warning(f"{self.process.label} Dropped oversized {origin} line: {e}")
                    continue
                if not raw:
                    break
                text = raw.decode(errors='replace')
                if not text.endswith('\n'):
                    text += '\n'
                self._lines.put_nowait(OutputLine(origin, text, self.process))
        finally:
            self._lines.put_nowait(None)

    async def _supervise(self):
        try:
            returncode = await self._child.wait()
            await asyncio.gather(*self._pumps)
        except Exception as e:
            self._completed.set_exception(e)
            return
        finally:
            if self._kill_timer is not None:
                self._kill_timer.cancel()

        if self._cancel_requested:
            outcome = ProcessOutcome.cancelled()
        elif returncode < 0:
            outcome = ProcessOutcome.signaled(-returncode)
        else:
            outcome = ProcessOutcome.exited(returncode)

        logger.debug(f"{self.process.label} Process {self.pid} {outcome}")
        self._completed.set_result(outcome)

    async def output(self) -> AsyncIterator[OutputLine]:
        """
        Yield output lines as they arrive until both streams are closed.

        Per-stream order is preserved. The stream can only be consumed once.
        """
        if self._output_taken:
            raise RuntimeError(f"{self.process.label} Output stream already consumed")
        self._output_taken = True

        open_streams = len(self._pumps)
        while open_streams:
            line = await self._lines.get()
            if line is None:
                open_streams -= 1
                continue
            yield line

    async def wait(self) -> ProcessOutcome:
        """Wait for the process to finish and return its outcome."""
        return await asyncio.shield(self._completed)

    def cancel(self):
        """
        Ask the process to terminate (SIGTERM).

        No-op if the process already exited or was already cancelled. Does not
        wait for the exit; use wait() for that.
        """
        if self._cancel_requested or self._completed.done() or not self.running:
            return

        self._cancel_requested = True
        logger.info(f"{self.process.label} Terminating process {self.pid}")
        try:
            self._child.terminate()
        except ProcessLookupError:
            return

        if self._kill_timeout is not None:
            self._kill_timer = self._loop.call_later(self._kill_timeout, self._kill)

    def _kill(self):
        if not self.running:
            return
        logger.warning(
            f"{self.process.label} Process {self.pid} did not stop after "
            f"{self._kill_timeout}s, sending SIGKILL"
        )
        try:
            self._child.kill()
        except ProcessLookupError:
            pass

    def __repr__(self):
        return f"ProcessHandle({self.process.label}, pid={self.pid}, running={self.running})"


class ProcessRunner:
    """
    Starts scheduled processes as child processes.

    The runner is stateless apart from its settings; it knows nothing about
    what the command does or about the queue.
    """

    def __init__(self, kill_timeout: Optional[float] = 10.0, env: Optional[Dict[str, str]] = None):
        """
        Initialize process runner.

        Args:
            kill_timeout: Seconds to wait after SIGTERM before sending SIGKILL
                (None never escalates)
            env: Environment for the child (inherits the current one if None)
        """
        self.kill_timeout = kill_timeout
        self.env = env

    async def start(self, process: ScheduledProcess) -> ProcessHandle:
        """
        Start a process.

        Args:
            process: The process to start

        Returns:
            Handle of the running child

        Raises:
            SpawnError: If the command line is empty or unparsable, or the OS
                cannot create the process
        """
        try:
            args = shlex.split(process.command_line)
        except ValueError as e:
            raise SpawnError(process, e) from e

        if not args:
            raise SpawnError(process, "empty command line")

        logger.info(f"{process.label} Executing command: {process.command_line}")

        try:
            child = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=process.working_dir,
                env=self.env,
                limit=LINE_LIMIT
            )
        except (OSError, ValueError) as e:
            logger.error(f"{process.label} Command could not be started: {e}")
            raise SpawnError(process, e) from e

        return ProcessHandle(process, child, kill_timeout=self.kill_timeout)

    def cancel(self, handle: ProcessHandle):
        """Request termination of a running handle. Idempotent."""
        handle.cancel()
