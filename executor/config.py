"""
Executor configuration management.

Handles loading, saving, and validating the executor settings: where the
analyzer lives, where its output and compilation database go, and how runs
are started. String settings may contain editor-style variables such as
${workspaceFolder}; they are replaced when the value is read.
"""

import json
import logging
import os
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

_VARIABLE_RE = re.compile(r'\$\{([^}]+)\}')


def replace_variables(value: Optional[str], workspace_folder: Optional[str] = None) -> Optional[str]:
    """
    Replace ${...} variables in a setting value.

    Supported: workspaceFolder, workspaceRoot, workspaceFolderBasename,
    userHome, cwd and env:NAME. Unknown variables are left as they are.

    Args:
        value: Setting value (None is passed through)
        workspace_folder: Folder substituted for ${workspaceFolder}

    Returns:
        The value with variables replaced
    """
    if value is None:
        return None

    def substitute(match):
        name = match.group(1)
        if name in ('workspaceFolder', 'workspaceRoot'):
            return workspace_folder if workspace_folder is not None else match.group(0)
        if name == 'workspaceFolderBasename':
            return Path(workspace_folder).name if workspace_folder is not None else match.group(0)
        if name == 'userHome':
            return str(Path.home())
        if name == 'cwd':
            return os.getcwd()
        if name.startswith('env:'):
            return os.environ.get(name[4:], '')
        return match.group(0)

    return _VARIABLE_RE.sub(substitute, value)


def _get_default_log_file() -> str:
    if os.environ.get('EXECUTOR_LOG_DIR'):
        return str(Path(os.environ['EXECUTOR_LOG_DIR']).expanduser() / "executor.log")
    elif os.environ.get('EXECUTOR_DATA_DIR'):
        return str(Path(os.environ['EXECUTOR_DATA_DIR']).expanduser() / "logs" / "executor.log")
    else:
        return "~/.analysis_executor/logs/executor.log"


@dataclass
class ExecutorSettings:
    """
    Analyzer invocation settings.

    Jobs are command-based: the executor only builds and runs command lines,
    it never interprets the analyzer's output.
    """
    executable_path: str = "CodeChecker"
    output_folder: str = "${workspaceFolder}/.codechecker"
    database_path: Optional[str] = None  # custom compilation database
    arguments: str = ""  # extra arguments for 'analyze'
    thread_count: Optional[int] = None  # -j, None uses all threads
    log_build_command: str = "make"
    log_arguments: str = ""  # extra arguments for 'log'
    run_on_save: bool = True
    timeout: Optional[float] = None  # seconds before a run is cancelled
    kill_timeout: Optional[float] = 10.0  # seconds between SIGTERM and SIGKILL
    watch_interval: float = 2.0  # database polling interval in seconds


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None  # Set dynamically in __post_init__

    def __post_init__(self):
        if self.file is None:
            self.file = _get_default_log_file()


class ExecutorConfig:
    """
    Executor configuration manager.

    Configuration path priority:
    1. Explicit config_path argument
    2. EXECUTOR_CONFIG_PATH environment variable
    3. Default: ~/.analysis_executor/config.json
    """

    DEFAULT_CONFIG_PATH = Path.home() / ".analysis_executor" / "config.json"

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize executor configuration.

        Args:
            config_path: Path to configuration file. If None, uses env var or default.
        """
        if config_path:
            self.config_path = Path(config_path).expanduser()
        elif os.environ.get('EXECUTOR_CONFIG_PATH'):
            self.config_path = Path(os.environ['EXECUTOR_CONFIG_PATH']).expanduser()
        else:
            self.config_path = self.DEFAULT_CONFIG_PATH

        self.executor = ExecutorSettings()
        self.logging = LoggingConfig()

        if self.config_path.exists():
            self.load()
        else:
            logger.info(f"No config found at {self.config_path}, using defaults")

    def load(self):
        """Load configuration from JSON file."""
        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)

            known = {f.name for f in fields(ExecutorSettings)}
            executor_data = data.get('executor', {})
            unknown = set(executor_data) - known
            if unknown:
                logger.warning(f"Ignoring unknown executor setting(s): {', '.join(sorted(unknown))}")
            self.executor = ExecutorSettings(**{k: v for k, v in executor_data.items() if k in known})

            if 'logging' in data:
                self.logging = LoggingConfig(**data['logging'])

            logger.info(f"Loaded configuration from {self.config_path}")

        except Exception as e:
            logger.error(f"Failed to load config from {self.config_path}: {e}")
            raise

    def save(self):
        """Save configuration to JSON file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            'executor': asdict(self.executor),
            'logging': asdict(self.logging)
        }

        with open(self.config_path, 'w') as f:
            json.dump(data, f, indent=2)

        logger.info(f"Saved configuration to {self.config_path}")

    def get(self, key: str, workspace_folder: Optional[str] = None) -> Any:
        """
        Read an executor setting with variables replaced.

        Args:
            key: ExecutorSettings field name
            workspace_folder: Folder used for ${workspaceFolder}

        Returns:
            The setting value; empty strings are returned as None
        """
        value = getattr(self.executor, key)
        if isinstance(value, str):
            value = replace_variables(value, workspace_folder)
            return value or None
        return value

    def update(self, **kwargs):
        """Update executor settings."""
        for key, value in kwargs.items():
            if not hasattr(self.executor, key):
                raise ValueError(f"Unknown executor setting '{key}'")
            setattr(self.executor, key, value)

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        settings = self.executor

        if not settings.executable_path or not settings.executable_path.strip():
            errors.append("'executable_path' cannot be empty")
        if not settings.output_folder or not settings.output_folder.strip():
            errors.append("'output_folder' cannot be empty")
        if settings.thread_count is not None and settings.thread_count < 1:
            errors.append("'thread_count' must be at least 1")
        if settings.timeout is not None and settings.timeout <= 0:
            errors.append("'timeout' must be positive")
        if settings.kill_timeout is not None and settings.kill_timeout < 0:
            errors.append("'kill_timeout' cannot be negative")
        if settings.watch_interval <= 0:
            errors.append("'watch_interval' must be positive")
        if self.logging.level.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            errors.append(f"Unknown logging level '{self.logging.level}'")

        return errors

    def __repr__(self):
        return f"ExecutorConfig(path={self.config_path})"
