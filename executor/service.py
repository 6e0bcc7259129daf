"""
Executor service driving the execution queue.

ExecutorManager guarantees that at most one external process runs at a
time. Submissions are queued under an insertion policy and the manager
drains the queue whenever the active slot frees up:

- Output of the active process is re-emitted on process_output
- Every run ends with exactly one process_completed event
- Runs can be stopped by kind; queued runs of that kind are dropped
- Per-run timeouts are APScheduler date jobs that cancel the run
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from executor.events import EventEmitter
from executor.execution_queue import ExecutionQueue
from executor.jobs import HistoryStore, ProcessHandle, ProcessRunner, SpawnError
from executor.models import (
    OutcomeKind,
    ProcessKind,
    ProcessOutcome,
    ProcessResult,
    QueuePolicy,
    ScheduledProcess,
)

logger = logging.getLogger(__name__)


class ExecutorManager:
    """
    Serializes scheduled processes through a single active slot.

    Construct once at startup and pass it to whoever submits work; call
    dispose() at shutdown. All methods must be called from the event loop
    thread.
    """

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        history: Optional[HistoryStore] = None,
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        """
        Initialize executor manager.

        Args:
            runner: Process runner (a default ProcessRunner if None)
            history: Run history store; runs are not recorded if None
            scheduler: APScheduler instance used for run timeouts (created
                on first use if None)
        """
        self.queue = ExecutionQueue()
        self.runner = runner or ProcessRunner()
        self.history = history

        self.process_started = EventEmitter('process_started')
        self.process_output = EventEmitter('process_output')
        self.process_completed = EventEmitter('process_completed')
        self.queue_changed = self.queue.changed

        self._scheduler = scheduler
        self._handle: Optional[ProcessHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._cancel_pending = False
        self._timed_out: Optional[str] = None
        self._disposed = False
        self._idle = asyncio.Event()
        self._idle.set()
        self.queue.changed.subscribe(self._on_queue_changed)

    @property
    def active_process(self) -> Optional[ScheduledProcess]:
        return self.queue.active

    @property
    def idle(self) -> bool:
        """True when nothing is running and nothing is pending."""
        return self.queue.active is None and len(self.queue) == 0

    def _on_queue_changed(self, queue: ExecutionQueue):
        if self.idle:
            self._idle.set()
        else:
            self._idle.clear()

    def submit(self, process: ScheduledProcess, policy: QueuePolicy = QueuePolicy.APPEND):
        """
        Queue a process and start it if nothing is running.

        Returns immediately; completion is reported on process_completed.

        Raises:
            RuntimeError: If the manager was disposed
        """
        if self._disposed:
            raise RuntimeError("Executor has been disposed")

        self.queue.enqueue(process, policy)
        self._drain()

    def stop(self, kind: ProcessKind):
        """Drop pending processes of a kind and cancel the active one if it matches."""
        self.queue.clear_by_kind(kind)

        active = self.queue.active
        if active is not None and active.kind == kind:
            self.kill_process()

    def kill_process(self):
        """
        Cancel the active process, if any.

        The active slot stays occupied until the process has actually exited.
        """
        active = self.queue.active
        if active is None:
            return

        if self._handle is None:
            # still spawning, cancel as soon as the handle exists
            self._cancel_pending = True
            return

        self.runner.cancel(self._handle)

    async def join(self):
        """Wait until nothing is running and nothing is pending."""
        while not self.idle:
            await self._idle.wait()

    async def dispose(self):
        """Drop pending work, cancel the active process and wait for it to end."""
        if self._disposed:
            return
        self._disposed = True

        dropped = self.queue.clear()
        if dropped:
            logger.info(f"Discarded {len(dropped)} pending process(es) on shutdown")

        self.kill_process()
        if self._task is not None and not self._task.done():
            await asyncio.wait([self._task])

        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def _drain(self):
        if self._disposed:
            return

        # dequeue and activation are one step, so re-entrant submissions only queue
        process = self.queue.activate_next()
        if process is None:
            return

        self._task = asyncio.get_running_loop().create_task(self._run(process))
        self._task.add_done_callback(self._run_done)

    def _run_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Executor run raised exception: {error}", exc_info=error)

    async def _run(self, process: ScheduledProcess):
        start_time = datetime.now()
        outcome = None
        try:
            outcome = await self._execute(process, start_time)
        except Exception as e:
            logger.error(f"{process.label} Run failed: {e}", exc_info=True)
            if self._handle is None:
                outcome = ProcessOutcome.spawn_failed(str(e))
            else:
                self._handle.cancel()
                outcome = ProcessOutcome(OutcomeKind.CANCELLED, error=str(e))
        finally:
            self._handle = None
            self._cancel_pending = False
            self._remove_timeout(process)
            self.queue.clear_active()

            if outcome is not None:
                self._record_end(process, outcome)
                self._log_outcome(process, start_time, outcome)
                self.process_completed.fire(ProcessResult(process, outcome))

            self._drain()

    async def _execute(self, process: ScheduledProcess, start_time: datetime) -> ProcessOutcome:
        self._record_start(process, start_time)

        try:
            handle = await self.runner.start(process)
        except SpawnError as e:
            return ProcessOutcome.spawn_failed(str(e.error))

        self._handle = handle
        if self._cancel_pending:
            handle.cancel()
        self._schedule_timeout(process)
        self.process_started.fire(process)

        async for line in handle.output():
            self.process_output.fire(line)

        return await handle.wait()

    def _get_scheduler(self) -> AsyncIOScheduler:
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(
                timezone='UTC',
                event_loop=asyncio.get_running_loop()
            )
        if not self._scheduler.running:
            self._scheduler.start()
        return self._scheduler

    @staticmethod
    def _timeout_job_id(process: ScheduledProcess) -> str:
        return f"timeout_{process.process_id}"

    def _schedule_timeout(self, process: ScheduledProcess):
        if not process.timeout:
            return

        self._get_scheduler().add_job(
            self._expire,
            'date',
            run_date=datetime.now(timezone.utc) + timedelta(seconds=process.timeout),
            args=[process.process_id],
            id=self._timeout_job_id(process),
            replace_existing=True,
            misfire_grace_time=None
        )
        logger.debug(f"{process.label} Timeout set to {process.timeout}s")

    def _remove_timeout(self, process: ScheduledProcess):
        if not process.timeout or self._scheduler is None:
            return
        try:
            self._scheduler.remove_job(self._timeout_job_id(process))
        except JobLookupError:
            pass  # already fired

    async def _expire(self, process_id: str):
        active = self.queue.active
        if active is None or active.process_id != process_id:
            return
        handle = self._handle
        if handle is None or handle.cancel_requested:
            return

        self.kill_process()
        # an exit racing the timer leaves the run untouched
        if handle.cancel_requested:
            logger.warning(f"{active.label} Timed out after {active.timeout}s, cancelling")
            self._timed_out = process_id

    def _log_outcome(self, process: ScheduledProcess, start_time: datetime, outcome: ProcessOutcome):
        duration = (datetime.now() - start_time).total_seconds()
        if outcome.succeeded:
            logger.info(f"{process.label} Completed successfully in {duration:.2f}s")
        elif outcome.status == 'spawn_failed':
            logger.error(f"{process.label} {outcome}")
        elif outcome.status == 'cancelled':
            logger.info(f"{process.label} Cancelled after {duration:.2f}s")
        else:
            logger.warning(f"{process.label} Failed after {duration:.2f}s: {outcome}")

    def _record_start(self, process: ScheduledProcess, start_time: datetime):
        if self.history is None:
            return
        try:
            self.history.start_run(process, start_time)
        except OSError as e:
            logger.warning(f"{process.label} Failed to record run history: {e}")

    def _record_end(self, process: ScheduledProcess, outcome: ProcessOutcome):
        timed_out = self._timed_out == process.process_id
        if timed_out:
            self._timed_out = None
        if self.history is None:
            return

        error = f"timed out after {process.timeout}s" if timed_out else None
        try:
            self.history.finish_run(process, outcome, datetime.now(), error=error)
        except OSError as e:
            logger.warning(f"{process.label} Failed to record run history: {e}")

    def __repr__(self):
        return f"ExecutorManager(queue={self.queue!r}, disposed={self._disposed})"
