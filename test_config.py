"""
Tests for loading, saving and validating the executor configuration.
"""

import json
import os
from pathlib import Path

import pytest

from executor.config import ExecutorConfig, replace_variables


def test_defaults_when_file_is_missing(tmp_path):
    config = ExecutorConfig(str(tmp_path / "missing.json"))

    assert config.executor.executable_path == "CodeChecker"
    assert config.executor.run_on_save is True
    assert config.executor.thread_count is None
    assert config.validate() == []


def test_env_var_selects_config_path(tmp_path, monkeypatch):
    path = tmp_path / "from_env.json"
    monkeypatch.setenv('EXECUTOR_CONFIG_PATH', str(path))

    assert ExecutorConfig().config_path == path


def test_save_and_load_round_trip(tmp_path):
    path = tmp_path / "config.json"
    config = ExecutorConfig(str(path))
    config.update(executable_path="/opt/cc/bin/CodeChecker", thread_count=8, run_on_save=False)
    config.save()

    loaded = ExecutorConfig(str(path))

    assert loaded.executor.executable_path == "/opt/cc/bin/CodeChecker"
    assert loaded.executor.thread_count == 8
    assert loaded.executor.run_on_save is False
    assert json.loads(path.read_text())['executor']['thread_count'] == 8


def test_unknown_settings_are_ignored(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({'executor': {'arguments': '--ctu', 'colour': 'blue'}}))

    config = ExecutorConfig(str(path))

    assert config.executor.arguments == '--ctu'


def test_invalid_json_raises(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    with pytest.raises(json.JSONDecodeError):
        ExecutorConfig(str(path))


def test_update_rejects_unknown_keys(tmp_path):
    config = ExecutorConfig(str(tmp_path / "config.json"))

    with pytest.raises(ValueError):
        config.update(colour='blue')


def test_validate_reports_bad_values(tmp_path):
    config = ExecutorConfig(str(tmp_path / "config.json"))
    config.update(executable_path=" ", thread_count=0, timeout=-1, watch_interval=0)
    config.logging.level = "LOUD"

    errors = config.validate()

    assert len(errors) == 5
    assert any("executable_path" in e for e in errors)
    assert any("thread_count" in e for e in errors)


def test_get_replaces_variables_and_blanks(tmp_path):
    config = ExecutorConfig(str(tmp_path / "config.json"))

    assert config.get('output_folder', '/work/proj') == '/work/proj/.codechecker'
    assert config.get('arguments', '/work/proj') is None
    assert config.get('thread_count') is None


def test_replace_variables(monkeypatch):
    monkeypatch.setenv('CC_OPTS', '--ctu')
    monkeypatch.delenv('CC_UNSET', raising=False)

    assert replace_variables("${workspaceFolder}/out", "/w/p") == "/w/p/out"
    assert replace_variables("${workspaceRoot}", "/w/p") == "/w/p"
    assert replace_variables("${workspaceFolderBasename}", "/w/p") == "p"
    assert replace_variables("${userHome}/x") == f"{Path.home()}/x"
    assert replace_variables("${cwd}") == os.getcwd()
    assert replace_variables("${env:CC_OPTS} -j2") == "--ctu -j2"
    assert replace_variables("${env:CC_UNSET}") == ""
    assert replace_variables("${unknown}") == "${unknown}"
    assert replace_variables("${workspaceFolder}") == "${workspaceFolder}"
    assert replace_variables(None) is None
