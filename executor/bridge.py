"""
User-facing analysis actions.

ExecutorBridge turns "analyze this file", "analyze the project" and "run
log" requests into ScheduledProcess submissions on an ExecutorManager. It
builds the analyzer command lines from the configuration and looks up the
compilation database the analyzer needs.
"""

import logging
import os
import shlex
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from executor.config import ExecutorConfig
from executor.events import EventEmitter
from executor.models import ProcessKind, QueuePolicy, ScheduledProcess
from executor.service import ExecutorManager
from executor.watcher import DatabaseWatcher

logger = logging.getLogger(__name__)


class ConfigurationMissing(Exception):
    """Raised when no command line can be built from the configuration."""
    pass


class ExecutorBridge:
    """
    Connects analysis actions to the executor.

    Channels:
        bridge_messages: '>>> ' prefixed metadata lines, each ending in a newline
        warnings: user-facing warning messages
        database_location_changed: a candidate database path appeared or vanished
    """

    def __init__(
        self,
        manager: ExecutorManager,
        config: ExecutorConfig,
        workspace_folder: Optional[str] = None,
        watcher: Optional[DatabaseWatcher] = None
    ):
        self.manager = manager
        self.config = config
        self.workspace_folder = str(workspace_folder) if workspace_folder else None
        self.bridge_messages = EventEmitter('bridge_messages')
        self.warnings = EventEmitter('warnings')
        self.watcher = watcher or DatabaseWatcher(interval=config.executor.watch_interval)
        self.database_location_changed = self.watcher.changed
        self.database_paths: List[Optional[str]] = []

        self.update_database_paths()

    def _message(self, text: str):
        logger.debug(text)
        self.bridge_messages.fire(f">>> {text}\n")

    def _warn(self, text: str):
        logger.warning(text)
        self.warnings.fire(text)

    def _output_folder(self) -> str:
        return (
            self.config.get('output_folder', self.workspace_folder)
            or os.path.join(self.workspace_folder, '.codechecker')
        )

    def _executable(self) -> str:
        return self.config.get('executable_path', self.workspace_folder) or 'CodeChecker'

    def update_database_paths(self):
        """Recompute the candidate database paths and rewire the watcher."""
        if not self.workspace_folder:
            return

        output_folder = self._output_folder()
        self.database_paths = [
            self.config.get('database_path', self.workspace_folder),
            os.path.join(output_folder, 'compile_commands.json'),
            os.path.join(output_folder, 'compile_cmd.json'),
        ]

        self.watcher.watch(p for p in self.database_paths if p)
        self.database_location_changed.fire()

    def get_compile_commands_path(self) -> Optional[str]:
        """
        Find the compilation database.

        update_database_paths() must have run at least once, which the
        constructor does.

        Returns:
            The first candidate path that exists, or None
        """
        if not self.workspace_folder:
            return None

        for path in self.database_paths:
            if path and Path(path).exists():
                self._message(f"Database found at path: {path}")
                return path

        self._message("No database found in the following paths:")
        for path in self.database_paths:
            if path:
                self._message(f"  {path}")
            else:
                self._message("  <no path set in settings>")

        return None

    def get_analyze_cmd_line(self, *files) -> str:
        """
        Build the analyze command line.

        Args:
            files: Restrict analysis to these files (whole project if empty)

        Raises:
            ConfigurationMissing: If no workspace is open or no database exists
        """
        if not self.workspace_folder:
            raise ConfigurationMissing("No workspace folder is open, analysis not started")

        arguments = self.config.get('arguments', self.workspace_folder)
        threads = self.config.get('thread_count')

        database = self.get_compile_commands_path()
        if database is None:
            raise ConfigurationMissing(
                "No compilation database found, analysis not started - see logs for details"
            )

        parts = [
            self._executable(), 'analyze',
            shlex.quote(database),
            '--output', shlex.quote(self._output_folder()),
        ]
        if threads:
            parts += ['-j', str(threads)]
        if arguments:
            parts.append(arguments)
        if files:
            parts.append('--file')
            parts += [shlex.quote(str(f)) for f in files]

        return ' '.join(parts)

    def get_log_cmd_line(self, build_command: Optional[str] = None) -> str:
        """
        Build the log command line that generates compile_commands.json.

        Args:
            build_command: Build command to trace (configured one if None)

        Raises:
            ConfigurationMissing: If no workspace is open
        """
        if not self.workspace_folder:
            raise ConfigurationMissing("No workspace folder is open, log not started")

        build_command = build_command or self.config.get('log_build_command', self.workspace_folder)
        if not build_command:
            raise ConfigurationMissing("No build command configured for log")

        database = os.path.join(self._output_folder(), 'compile_commands.json')
        parts = [
            self._executable(), 'log',
            '--output', shlex.quote(database),
            '--build', shlex.quote(build_command),
        ]
        log_arguments = self.config.get('log_arguments', self.workspace_folder)
        if log_arguments:
            parts.append(log_arguments)

        return ' '.join(parts)

    def _submit(
        self,
        build: Callable[[], str],
        kind: ProcessKind,
        policy: QueuePolicy
    ) -> Optional[ScheduledProcess]:
        try:
            command_line = build()
        except ConfigurationMissing as e:
            self._warn(str(e))
            return None

        process = ScheduledProcess(
            command_line,
            kind=kind,
            working_dir=self.workspace_folder,
            timeout=self.config.get('timeout')
        )
        self.manager.submit(process, policy)
        return process

    def analyze_file(self, path) -> Optional[ScheduledProcess]:
        """Analyze one file ahead of anything already queued."""
        return self._submit(
            lambda: self.get_analyze_cmd_line(path),
            ProcessKind.ANALYZE,
            QueuePolicy.PREPEND
        )

    def analyze_files(self, paths: Iterable) -> List[Optional[ScheduledProcess]]:
        return [self.analyze_file(path) for path in paths]

    def analyze_project(self) -> Optional[ScheduledProcess]:
        """Analyze the whole project, superseding all queued and running analyses."""
        self.stop_analysis()
        return self._submit(self.get_analyze_cmd_line, ProcessKind.ANALYZE, QueuePolicy.REPLACE)

    def analyze_on_save(self, path) -> Optional[ScheduledProcess]:
        """Analyze a saved file if run_on_save is enabled; silent when there is no database."""
        if not self.config.get('run_on_save'):
            return None
        if self.get_compile_commands_path() is None:
            return None
        return self.analyze_file(path)

    def run_log(self, build_command: Optional[str] = None) -> Optional[ScheduledProcess]:
        return self._submit(
            lambda: self.get_log_cmd_line(build_command),
            ProcessKind.LOG,
            QueuePolicy.APPEND
        )

    def stop_analysis(self):
        self.manager.stop(ProcessKind.ANALYZE)

    def stop_log(self):
        self.manager.stop(ProcessKind.LOG)

    def start_watching(self):
        self.watcher.start()

    def dispose(self):
        self.watcher.stop()
        self.bridge_messages.clear()
        self.warnings.clear()
        self.database_location_changed.clear()
