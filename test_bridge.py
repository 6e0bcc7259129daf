"""
Tests for building analyzer command lines and routing user actions to the
executor with the right queue policy.
"""

import shlex

import pytest

from executor.bridge import ConfigurationMissing, ExecutorBridge
from executor.config import ExecutorConfig
from executor.models import ProcessKind, QueuePolicy


class FakeManager:
    """Records what the bridge asks of the executor."""

    def __init__(self):
        self.calls = []

    def submit(self, process, policy=QueuePolicy.APPEND):
        self.calls.append(('submit', process, QueuePolicy(policy)))

    def stop(self, kind):
        self.calls.append(('stop', kind))


@pytest.fixture
def workspace(tmp_path):
    folder = tmp_path / "project"
    folder.mkdir()
    return folder


@pytest.fixture
def config(tmp_path):
    return ExecutorConfig(str(tmp_path / "config.json"))


@pytest.fixture
def database(workspace):
    output = workspace / ".codechecker"
    output.mkdir()
    path = output / "compile_commands.json"
    path.write_text("[]")
    return path


def make_bridge(config, workspace=None):
    manager = FakeManager()
    return ExecutorBridge(manager, config, workspace_folder=workspace), manager


def test_database_paths_follow_output_folder(config, workspace):
    config.update(database_path="${workspaceFolder}/build/compile_commands.json")
    bridge, _ = make_bridge(config, workspace)

    assert bridge.database_paths == [
        f"{workspace}/build/compile_commands.json",
        f"{workspace}/.codechecker/compile_commands.json",
        f"{workspace}/.codechecker/compile_cmd.json",
    ]


def test_missing_database_is_reported(config, workspace):
    bridge, _ = make_bridge(config, workspace)
    messages = []
    bridge.bridge_messages.subscribe(messages.append)

    assert bridge.get_compile_commands_path() is None
    assert messages[0] == ">>> No database found in the following paths:\n"
    assert ">>>   <no path set in settings>\n" in messages
    assert all(m.startswith(">>> ") and m.endswith("\n") for m in messages)


def test_database_is_found(config, workspace, database):
    bridge, _ = make_bridge(config, workspace)
    messages = []
    bridge.bridge_messages.subscribe(messages.append)

    assert bridge.get_compile_commands_path() == str(database)
    assert messages == [f">>> Database found at path: {database}\n"]


def test_analyze_command_line(config, workspace, database):
    config.update(thread_count=4, arguments="--ctu --enable sensitive")
    bridge, _ = make_bridge(config, workspace)

    args = shlex.split(bridge.get_analyze_cmd_line(workspace / "main.c"))

    assert args == [
        "CodeChecker", "analyze", str(database),
        "--output", f"{workspace}/.codechecker",
        "-j", "4",
        "--ctu", "--enable", "sensitive",
        "--file", f"{workspace}/main.c",
    ]


def test_analyze_command_line_quotes_paths(config, tmp_path):
    workspace = tmp_path / "my project"
    (workspace / ".codechecker").mkdir(parents=True)
    (workspace / ".codechecker" / "compile_cmd.json").write_text("[]")
    bridge, _ = make_bridge(config, workspace)

    args = shlex.split(bridge.get_analyze_cmd_line())

    assert args[2] == f"{workspace}/.codechecker/compile_cmd.json"
    assert args[4] == f"{workspace}/.codechecker"
    assert "--file" not in args


def test_analyze_command_line_requires_database(config, workspace):
    bridge, _ = make_bridge(config, workspace)

    with pytest.raises(ConfigurationMissing):
        bridge.get_analyze_cmd_line()


def test_no_workspace_is_configuration_missing(config):
    bridge, manager = make_bridge(config)

    with pytest.raises(ConfigurationMissing):
        bridge.get_analyze_cmd_line()
    with pytest.raises(ConfigurationMissing):
        bridge.get_log_cmd_line()
    assert bridge.get_compile_commands_path() is None
    assert bridge.analyze_project() is None
    assert [c for c in manager.calls if c[0] == 'submit'] == []


def test_log_command_line(config, workspace):
    config.update(log_arguments="--verbose debug")
    bridge, _ = make_bridge(config, workspace)

    assert shlex.split(bridge.get_log_cmd_line()) == [
        "CodeChecker", "log",
        "--output", f"{workspace}/.codechecker/compile_commands.json",
        "--build", "make",
        "--verbose", "debug",
    ]
    assert shlex.split(bridge.get_log_cmd_line("ninja -C build"))[5] == "ninja -C build"


def test_analyze_file_prepends(config, workspace, database):
    config.update(timeout=600)
    bridge, manager = make_bridge(config, workspace)

    process = bridge.analyze_file(workspace / "main.c")

    assert manager.calls == [('submit', process, QueuePolicy.PREPEND)]
    assert process.kind is ProcessKind.ANALYZE
    assert process.working_dir == str(workspace)
    assert process.timeout == 600
    assert process.command_line.endswith(f"--file {workspace}/main.c")


def test_analyze_files_submits_each_file(config, workspace, database):
    bridge, manager = make_bridge(config, workspace)

    processes = bridge.analyze_files([workspace / "a.c", workspace / "b.c"])

    assert len(processes) == 2
    assert [c[2] for c in manager.calls] == [QueuePolicy.PREPEND, QueuePolicy.PREPEND]


def test_analyze_project_stops_then_replaces(config, workspace, database):
    bridge, manager = make_bridge(config, workspace)

    process = bridge.analyze_project()

    assert manager.calls == [
        ('stop', ProcessKind.ANALYZE),
        ('submit', process, QueuePolicy.REPLACE),
    ]
    assert "--file" not in process.command_line


def test_configuration_missing_never_reaches_the_queue(config, workspace):
    bridge, manager = make_bridge(config, workspace)
    warnings = []
    bridge.warnings.subscribe(warnings.append)

    assert bridge.analyze_file(workspace / "main.c") is None

    assert manager.calls == []
    assert len(warnings) == 1
    assert "No compilation database found" in warnings[0]


def test_analyze_on_save(config, workspace, database):
    bridge, manager = make_bridge(config, workspace)

    process = bridge.analyze_on_save(workspace / "main.c")

    assert manager.calls == [('submit', process, QueuePolicy.PREPEND)]


def test_analyze_on_save_disabled(config, workspace, database):
    config.update(run_on_save=False)
    bridge, manager = make_bridge(config, workspace)

    assert bridge.analyze_on_save(workspace / "main.c") is None
    assert manager.calls == []


def test_analyze_on_save_without_database_is_silent(config, workspace):
    bridge, manager = make_bridge(config, workspace)
    warnings = []
    bridge.warnings.subscribe(warnings.append)

    assert bridge.analyze_on_save(workspace / "main.c") is None
    assert manager.calls == []
    assert warnings == []


def test_run_log_appends(config, workspace):
    bridge, manager = make_bridge(config, workspace)

    process = bridge.run_log("make -j8")

    assert manager.calls == [('submit', process, QueuePolicy.APPEND)]
    assert process.kind is ProcessKind.LOG


def test_stop_actions_use_kinds(config, workspace):
    bridge, manager = make_bridge(config, workspace)

    bridge.stop_analysis()
    bridge.stop_log()

    assert manager.calls == [('stop', ProcessKind.ANALYZE), ('stop', ProcessKind.LOG)]


def test_update_database_paths_fires_location_changed(config, workspace):
    bridge, _ = make_bridge(config, workspace)
    fired = []
    bridge.database_location_changed.subscribe(fired.append)

    config.update(output_folder="${workspaceFolder}/out")
    bridge.update_database_paths()

    assert len(fired) == 1
    assert bridge.database_paths[1] == f"{workspace}/out/compile_commands.json"
    assert f"{workspace}/out/compile_commands.json" in bridge.watcher.paths


def test_watcher_reports_database_creation(config, workspace):
    bridge, _ = make_bridge(config, workspace)
    fired = []
    bridge.database_location_changed.subscribe(fired.append)

    (workspace / ".codechecker").mkdir()
    (workspace / ".codechecker" / "compile_commands.json").write_text("[]")

    assert bridge.watcher.check()
    assert len(fired) == 1
