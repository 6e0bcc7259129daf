"""
Tests for the JSON run history.
"""

import json
from datetime import datetime, timedelta

from executor.jobs import HistoryStore
from executor.models import ProcessKind, ProcessOutcome, ScheduledProcess


def finish(store, process, outcome, seconds=1.5, error=None):
    start = datetime(2026, 1, 1, 12, 0, 0)
    store.start_run(process, start)
    store.finish_run(process, outcome, start + timedelta(seconds=seconds), error=error)


def test_run_is_recorded_from_start_to_finish(tmp_path):
    store = HistoryStore(history_file=tmp_path / "history.json")
    process = ScheduledProcess("CodeChecker analyze db.json", kind=ProcessKind.ANALYZE, working_dir="/w")

    store.start_run(process, datetime(2026, 1, 1, 12, 0, 0))
    assert store.get_run(process.process_id)['status'] == 'running'

    store.finish_run(process, ProcessOutcome.exited(2), datetime(2026, 1, 1, 12, 0, 3))
    record = store.get_run(process.process_id)

    assert record['kind'] == 'analyze'
    assert record['command'] == "CodeChecker analyze db.json"
    assert record['working_dir'] == "/w"
    assert record['status'] == 'failed'
    assert record['outcome'] == 'exited'
    assert record['exit_code'] == 2
    assert record['signal'] is None
    assert record['elapsed_seconds'] == 3.0


def test_signal_and_errors_are_kept(tmp_path):
    store = HistoryStore(history_file=tmp_path / "history.json")
    killed = ScheduledProcess("sleep 30")
    broken = ScheduledProcess("missing-binary")
    slow = ScheduledProcess("sleep 60")

    finish(store, killed, ProcessOutcome.signaled(9))
    finish(store, broken, ProcessOutcome.spawn_failed("No such file or directory"))
    finish(store, slow, ProcessOutcome.cancelled(), error="timed out after 5s")

    assert store.get_run(killed.process_id)['signal'] == 9
    assert store.get_run(killed.process_id)['error'] == "killed by signal 9"
    assert store.get_run(broken.process_id)['outcome'] == 'spawn_failed'
    assert store.get_run(broken.process_id)['error'] == "No such file or directory"
    assert store.get_run(slow.process_id)['status'] == 'cancelled'
    assert store.get_run(slow.process_id)['error'] == "timed out after 5s"


def test_finish_without_start_is_ignored(tmp_path):
    store = HistoryStore(history_file=tmp_path / "history.json")

    store.finish_run(ScheduledProcess("true"), ProcessOutcome.exited(0), datetime.now())

    assert store.get_history() == []


def test_filters_summary_and_clear(tmp_path):
    store = HistoryStore(history_file=tmp_path / "history.json")
    finish(store, ScheduledProcess("a", kind=ProcessKind.ANALYZE), ProcessOutcome.exited(0))
    finish(store, ScheduledProcess("b", kind=ProcessKind.ANALYZE), ProcessOutcome.cancelled())
    finish(store, ScheduledProcess("c", kind=ProcessKind.LOG), ProcessOutcome.exited(0))

    assert len(store.get_history(kind='analyze')) == 2
    assert len(store.get_history(status='success')) == 2
    assert len(store.get_history(limit=1)) == 1
    assert store.summary() == {
        'analyze': {'success': 1, 'cancelled': 1},
        'log': {'success': 1},
    }

    store.clear_history(kind='analyze')
    assert [r['kind'] for r in store.get_history()] == ['log']
    store.clear_history()
    assert store.get_history() == []


def test_oldest_entries_are_trimmed(tmp_path):
    store = HistoryStore(history_file=tmp_path / "history.json", max_entries=2)
    processes = [ScheduledProcess(f"echo {i}") for i in range(3)]
    for process in processes:
        finish(store, process, ProcessOutcome.exited(0))

    assert store.get_run(processes[0].process_id) is None
    assert len(json.loads((tmp_path / "history.json").read_text())) == 2


def test_unreadable_file_starts_over(tmp_path):
    path = tmp_path / "history.json"
    path.write_text("{broken")
    store = HistoryStore(history_file=path)

    assert store.get_history() == []
    finish(store, ScheduledProcess("true"), ProcessOutcome.exited(0))
    assert len(store.get_history()) == 1
