"""
Command-line interface for the analysis executor.

Provides commands for:
- Analyzing files or the whole project
- Generating the compilation database (log)
- Showing the analyzer command line
- Viewing run history
- Managing configuration
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from executor.bridge import ConfigurationMissing, ExecutorBridge
from executor.config import ExecutorConfig
from executor.jobs import HistoryStore, ProcessRunner
from executor.models import OutputLine, ProcessResult, ScheduledProcess
from executor.service import ExecutorManager

logger = logging.getLogger(__name__)


def get_log_dir() -> Path:
    """Get the log directory from environment or default."""
    if os.environ.get('EXECUTOR_LOG_DIR'):
        return Path(os.environ['EXECUTOR_LOG_DIR']).expanduser()
    elif os.environ.get('EXECUTOR_DATA_DIR'):
        return Path(os.environ['EXECUTOR_DATA_DIR']).expanduser() / "logs"
    else:
        return Path.home() / ".analysis_executor" / "logs"


def get_log_file() -> Path:
    return get_log_dir() / "executor.log"


def setup_logging(log_file: str = None, verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)


def _workspace(args) -> str:
    return str(Path(args.workspace or os.getcwd()).expanduser().resolve())


def _echo_line(line: OutputLine):
    stream = sys.stderr if line.stream == 'stderr' else sys.stdout
    stream.write(line.text)
    stream.flush()


async def _run_actions(args, action: Callable[[ExecutorBridge], List[Optional[ScheduledProcess]]]) -> int:
    """Submit the processes produced by action and wait for all of them."""
    config = ExecutorConfig(args.config)
    runner = ProcessRunner(kill_timeout=config.executor.kill_timeout)
    manager = ExecutorManager(runner=runner, history=HistoryStore())
    bridge = ExecutorBridge(manager, config, workspace_folder=_workspace(args))

    results: List[ProcessResult] = []
    manager.process_output.subscribe(_echo_line)
    manager.process_completed.subscribe(results.append)

    try:
        submitted = action(bridge)
        if not submitted or not all(submitted):
            return 1
        await manager.join()
    finally:
        await manager.dispose()
        bridge.dispose()

    for result in results:
        logger.info(f"{result.process.label} {result.outcome}")

    return 0 if results and all(r.outcome.succeeded for r in results) else 1


def _run(args, action) -> int:
    try:
        return asyncio.run(_run_actions(args, action))
    except KeyboardInterrupt:
        logger.info("Interrupted, running process stopped")
        return 130


def cmd_analyze(args):
    """Analyze files, or the whole project when no files are given."""
    setup_logging(log_file=args.log_file, verbose=args.verbose)

    if args.files:
        files = [str(Path(f).expanduser().resolve()) for f in args.files]
        sys.exit(_run(args, lambda bridge: bridge.analyze_files(files)))
    else:
        sys.exit(_run(args, lambda bridge: [bridge.analyze_project()]))


def cmd_log(args):
    """Run the log command to generate the compilation database."""
    setup_logging(log_file=args.log_file, verbose=args.verbose)
    sys.exit(_run(args, lambda bridge: [bridge.run_log(args.build)]))


def cmd_show_command(args):
    """Print the analyze command line."""
    setup_logging(verbose=args.verbose)

    bridge = ExecutorBridge(ExecutorManager(), ExecutorConfig(args.config), workspace_folder=_workspace(args))
    bridge.bridge_messages.subscribe(lambda message: print(message, end=''))
    try:
        files = [str(Path(f).expanduser().resolve()) for f in args.files]
        print(bridge.get_analyze_cmd_line(*files))
    except ConfigurationMissing as e:
        logger.error(f"Failed to build command line: {e}")
        sys.exit(1)


def _format_elapsed(elapsed) -> str:
    if elapsed is None:
        return '-'
    if elapsed >= 3600:
        return f"{elapsed/3600:.1f}h"
    if elapsed >= 60:
        return f"{elapsed/60:.1f}m"
    return f"{elapsed:.1f}s"


def _format_time(value) -> str:
    if not value:
        return 'N/A'
    try:
        return datetime.fromisoformat(value).strftime('%Y-%m-%d %H:%M:%S')
    except ValueError:
        return value[:19]


def _format_exit(record) -> str:
    if record.get('signal') is not None:
        return f"SIG{record['signal']}"
    if record.get('exit_code') is not None:
        return str(record['exit_code'])
    return '-'


def cmd_history(args):
    """Show run history."""
    try:
        history_store = HistoryStore()

        if args.summary:
            counts = history_store.summary()
            if not counts:
                print("\nNo run history found.")
                return
            print()
            for kind, statuses in sorted(counts.items()):
                totals = ', '.join(f"{status}: {count}" for status, count in sorted(statuses.items()))
                print(f"  {kind:<10} {totals}")
            return

        history = history_store.get_history(
            kind=args.kind,
            status=args.status,
            limit=args.limit if not args.show_all else None
        )

        if not history:
            print("\nNo run history found.")
            if args.kind:
                print(f"  Filter: kind = '{args.kind}'")
            if args.status:
                print(f"  Filter: status = '{args.status}'")
            return

        if args.json:
            print(json.dumps(history, indent=2))
            return

        headers = ['Kind', 'Run ID', 'Start Time', 'Elapsed', 'Status', 'Exit']
        rows = [
            [
                record.get('kind') or 'unknown',
                record.get('run_id') or 'N/A',
                _format_time(record.get('start_time')),
                _format_elapsed(record.get('elapsed_seconds')),
                record.get('status') or 'unknown',
                _format_exit(record),
            ]
            for record in history
        ]
        widths = [max(len(headers[i]), max(len(r[i]) for r in rows)) for i in range(len(headers))]

        def make_row(cells):
            return "│ " + " │ ".join(cell.ljust(w) for cell, w in zip(cells, widths)) + " │"

        def make_separator(left, mid, right, fill='─'):
            return left + mid.join(fill * (w + 2) for w in widths) + right

        print()
        print(make_separator('┌', '┬', '┐'))
        print(make_row(headers))
        print(make_separator('├', '┼', '┤'))
        for record, row in zip(history, rows):
            print(make_row(row))
            if args.verbose and record.get('error'):
                print(f"│   └─ Error: {record['error'][:80]}")
        print(make_separator('└', '┴', '┘'))

        print(f"\nShowing {len(history)} run(s)")
        print(f"History file: {history_store.history_file}")

    except Exception as e:
        print(f"Error reading history: {e}")
        sys.exit(1)


def cmd_init(args):
    """Initialize executor configuration."""
    setup_logging(verbose=args.verbose)

    config = ExecutorConfig(args.config)
    if config.config_path.exists():
        logger.warning(f"Configuration already exists at {config.config_path}")
        return

    config.save()
    logger.info(f"Created configuration at {config.config_path}")


def cmd_show_config(args):
    """Show configuration."""
    setup_logging(verbose=args.verbose)

    config = ExecutorConfig(args.config)
    workspace = _workspace(args)

    print(f"\nConfiguration file: {config.config_path}")
    print(f"Workspace folder:   {workspace}\n")
    for key, value in vars(config.executor).items():
        resolved = config.get(key, workspace)
        if resolved != value:
            print(f"  {key:<18} {value!r} -> {resolved!r}")
        else:
            print(f"  {key:<18} {value!r}")

    errors = config.validate()
    if errors:
        print("\nValidation errors:")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Analysis Executor - run a static analyzer one process at a time",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '-c', '--config',
        type=str,
        help='Path to executor configuration file'
    )
    parser.add_argument(
        '-w', '--workspace',
        type=str,
        help='Workspace folder (default: current directory)'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )
    parser.add_argument(
        '--log-file',
        type=str,
        help='Also write logs to this file'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    analyze_parser = subparsers.add_parser('analyze', help='Analyze files, or the whole project')
    analyze_parser.add_argument('files', nargs='*', help='Files to analyze (default: entire project)')
    analyze_parser.set_defaults(func=cmd_analyze)

    log_parser = subparsers.add_parser('log', help='Generate the compilation database')
    log_parser.add_argument('--build', type=str, help='Build command to trace (default: from config)')
    log_parser.set_defaults(func=cmd_log)

    show_command_parser = subparsers.add_parser('show-command', help='Show the full analyze command line')
    show_command_parser.add_argument('files', nargs='*', help='Files to analyze')
    show_command_parser.set_defaults(func=cmd_show_command)

    history_parser = subparsers.add_parser('history', help='View run history')
    history_parser.add_argument('--kind', '-k', type=str,
                                choices=['analyze', 'log', 'version', 'other'],
                                help='Filter by process kind')
    history_parser.add_argument('--status', '-s', type=str,
                                choices=['running', 'success', 'failed', 'cancelled', 'spawn_failed'],
                                help='Filter by status')
    history_parser.add_argument('--limit', '-n', type=int, default=20,
                                help='Maximum number of entries to show (default: 20)')
    history_parser.add_argument('--all', '-a', dest='show_all', action='store_true',
                                help='Show all history entries')
    history_parser.add_argument('--json', action='store_true',
                                help='Output in JSON format')
    history_parser.add_argument('--summary', action='store_true',
                                help='Show run counts per kind and status')
    history_parser.set_defaults(func=cmd_history)

    init_parser = subparsers.add_parser('init', help='Initialize executor configuration')
    init_parser.set_defaults(func=cmd_init)

    show_config_parser = subparsers.add_parser('show-config', help='Show configuration')
    show_config_parser.set_defaults(func=cmd_show_config)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == '__main__':
    main()
