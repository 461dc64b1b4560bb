"""Application configuration module for the key recovery engine."""
import logging
import os
import sys
from dataclasses import dataclass
from typing import Dict, List, Any

import yaml
from dotenv import load_dotenv

from src.logging_config import setup_logger
from src.locale_cache import DEFAULT_MAX_SOURCE_FILES, DEFAULT_SOURCE_EXCLUDE_DIRS, DEFAULT_SOURCE_GLOBS
from src.locale_store import DEFAULT_LOCALE_ROOTS
from src.operation_lock import FILE_LOCK_TIMEOUT_SECONDS, FILE_WRITE_DELAY_SECONDS, LOCK_TIMEOUT_SECONDS
from src.version_history import GIT_TIMEOUT_SECONDS, MAX_HISTORY_COMMITS


@dataclass
class RecoveryConfig:
    """Application configuration dataclass."""
    # Core paths
    project_root: str
    workspace_root: str
    state_file_path: str

    # Recovery windows
    default_locale: str
    days_back: int
    max_commits: int
    max_commits_per_file: int
    source_days_back: int
    source_max_commits: int
    batch_width: int

    # File discovery
    locale_roots: List[str]
    source_globs: List[str]
    source_exclude_dirs: List[str]
    max_source_files: int

    # Git process limits
    git_timeout_seconds: float
    git_max_concurrency: int
    git_rate_limit: int

    # Locking
    lock_timeout_seconds: float
    file_lock_timeout_seconds: float
    file_write_delay_seconds: float


def _compute_project_root() -> str:
    """Compute the project root directory."""
    script_real_path = os.path.realpath(__file__)
    script_dir = os.path.dirname(script_real_path)
    return os.path.abspath(os.path.join(script_dir, os.pardir))


def _load_dotenv_files(project_root: str) -> None:
    """Load .env files from project root or docker directory."""
    dotenv_path_project_root = os.path.join(project_root, '.env')
    dotenv_path_docker_dir = os.path.join(project_root, 'docker', '.env')

    if os.path.exists(dotenv_path_project_root):
        load_dotenv(dotenv_path_project_root)
    elif os.path.exists(dotenv_path_docker_dir):
        load_dotenv(dotenv_path_docker_dir)


def _load_yaml_config(project_root: str) -> Dict[str, Any]:
    """Load the YAML configuration file; any problem prints a warning and yields an empty dict."""
    default_config_path = os.path.join(project_root, 'config.yaml')
    config_file = os.environ.get('KEY_RECOVERY_CONFIG_FILE', default_config_path)

    if not os.path.isabs(config_file):
        config_file = os.path.abspath(config_file)

    config = {}
    try:
        if not os.path.exists(config_file):
            print(f"Warning: Configuration file '{config_file}' not found. Using default configuration.",
                  file=sys.stderr)
            print(f"Tip: Create a config.yaml file in '{project_root}' or set KEY_RECOVERY_CONFIG_FILE environment variable.",
                  file=sys.stderr)
            return config

        if not os.access(config_file, os.R_OK):
            print(f"Error: Configuration file '{config_file}' exists but is not readable. Check file permissions.",
                  file=sys.stderr)
            return config

        with open(config_file, 'r', encoding='utf-8') as config_file_stream:
            loaded_config = yaml.safe_load(config_file_stream)
            if loaded_config is None:
                print(f"Warning: Configuration file '{config_file}' is empty. Using default configuration.",
                      file=sys.stderr)
            elif isinstance(loaded_config, dict):
                config = loaded_config
                print(f"Successfully loaded configuration from: {config_file}", file=sys.stderr)
            else:
                print(f"Error: Configuration file '{config_file}' must contain a YAML dictionary. Using defaults.",
                      file=sys.stderr)

    except yaml.YAMLError as e:
        print(f"Error: Invalid YAML in configuration file '{config_file}': {e}", file=sys.stderr)
        print("Please check your YAML syntax. Using default configuration.", file=sys.stderr)
    except OSError as e:
        print(f"Error: Could not read configuration file '{config_file}': {e}", file=sys.stderr)
        print("Using default configuration.", file=sys.stderr)

    return config


def _setup_logger_from_config(config: Dict[str, Any]) -> logging.Logger:
    """Set up logger based on configuration."""
    log_config = config.get('logging') or {}
    log_level_str = str(log_config.get('log_level', 'INFO')).upper()
    log_file_path = log_config.get('log_file_path', 'logs/key_recovery.log')
    log_to_console = log_config.get('log_to_console', True)
    return setup_logger(log_level_str, log_file_path, log_to_console)


def _log_dotenv_status(logger: logging.Logger, project_root: str) -> None:
    """Log the status of .env file loading."""
    dotenv_path_project_root = os.path.join(project_root, '.env')
    dotenv_path_docker_dir = os.path.join(project_root, 'docker', '.env')

    if os.path.exists(dotenv_path_project_root):
        logger.info("Loaded environment variables from: %s", dotenv_path_project_root)
    elif os.path.exists(dotenv_path_docker_dir):
        logger.info("Loaded environment variables from: %s", dotenv_path_docker_dir)
    else:
        logger.info(
            "No .env file found in project root ('%s') or in docker/ ('%s'). Relying on system environment variables if any.",
            dotenv_path_project_root,
            dotenv_path_docker_dir
        )


def _int_from_env(name: str, default: int, logger: logging.Logger) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not an integer. Using {default}.")
        return int(default)


def load_app_config() -> RecoveryConfig:
    """
    Load application configuration from YAML file and environment variables.

    Environment variables KEY_RECOVERY_WORKSPACE, KEY_RECOVERY_DEFAULT_LOCALE,
    KEY_RECOVERY_DAYS_BACK and KEY_RECOVERY_BATCH_WIDTH override the file.

    Returns:
        RecoveryConfig: The loaded application configuration.
    """
    project_root = _compute_project_root()

    _load_dotenv_files(project_root)

    config = _load_yaml_config(project_root)

    logger = _setup_logger_from_config(config)

    _log_dotenv_status(logger, project_root)

    workspace_root = os.environ.get('KEY_RECOVERY_WORKSPACE', config.get('workspace_root', os.getcwd()))
    workspace_root = os.path.abspath(workspace_root)
    default_locale = os.environ.get('KEY_RECOVERY_DEFAULT_LOCALE', config.get('default_locale', 'en'))
    days_back = _int_from_env('KEY_RECOVERY_DAYS_BACK', config.get('days_back', 120), logger)
    batch_width = _int_from_env('KEY_RECOVERY_BATCH_WIDTH', config.get('batch_width', 5), logger)

    # Relative state paths live inside the workspace
    state_file_path = config.get('state_file_path', os.path.join('.key_recovery', 'state.json'))
    if not os.path.isabs(state_file_path):
        state_file_path = os.path.join(workspace_root, state_file_path)

    return RecoveryConfig(
        project_root=project_root,
        workspace_root=workspace_root,
        state_file_path=state_file_path,
        default_locale=default_locale,
        days_back=days_back,
        max_commits=config.get('max_commits', MAX_HISTORY_COMMITS),
        max_commits_per_file=config.get('max_commits_per_file', 15),
        source_days_back=config.get('source_days_back', 365),
        source_max_commits=config.get('source_max_commits', 50),
        batch_width=max(1, batch_width),
        locale_roots=list(config.get('locale_roots', DEFAULT_LOCALE_ROOTS)),
        source_globs=list(config.get('source_globs', DEFAULT_SOURCE_GLOBS)),
        source_exclude_dirs=list(config.get('source_exclude_dirs', DEFAULT_SOURCE_EXCLUDE_DIRS)),
        max_source_files=config.get('max_source_files', DEFAULT_MAX_SOURCE_FILES),
        git_timeout_seconds=config.get('git_timeout_seconds', GIT_TIMEOUT_SECONDS),
        git_max_concurrency=config.get('git_max_concurrency', 4),
        git_rate_limit=config.get('git_rate_limit', 50),
        lock_timeout_seconds=config.get('lock_timeout_seconds', LOCK_TIMEOUT_SECONDS),
        file_lock_timeout_seconds=config.get('file_lock_timeout_seconds', FILE_LOCK_TIMEOUT_SECONDS),
        file_write_delay_seconds=config.get('file_write_delay_seconds', FILE_WRITE_DELAY_SECONDS),
    )
