"""Unit tests for the app_config module."""
import os
from unittest.mock import patch, mock_open, MagicMock

import yaml

from src.app_config import RecoveryConfig, load_app_config
from src.recover_keys import build_recovery_options


def _load_with_yaml(mock_config, environ=None):
    """Runs load_app_config against an in-memory config.yaml."""
    with patch("builtins.open", mock_open(read_data=yaml.dump(mock_config))):
        with patch("os.path.exists", return_value=True):
            with patch("os.access", return_value=True):
                with patch("src.app_config.load_dotenv"):
                    with patch("src.app_config.setup_logger") as mock_logger:
                        mock_logger.return_value = MagicMock()
                        with patch.dict(os.environ, environ or {}, clear=True):
                            return load_app_config()


class TestRecoveryConfig:
    """Test cases for the RecoveryConfig dataclass."""

    def test_recovery_config_creation(self):
        config = RecoveryConfig(
            project_root="/test/root",
            workspace_root="/test/workspace",
            state_file_path="/test/workspace/.key_recovery/state.json",
            default_locale="en",
            days_back=120,
            max_commits=100,
            max_commits_per_file=15,
            source_days_back=365,
            source_max_commits=50,
            batch_width=5,
            locale_roots=["locales"],
            source_globs=["**/*.ts"],
            source_exclude_dirs=["node_modules"],
            max_source_files=500,
            git_timeout_seconds=30,
            git_max_concurrency=4,
            git_rate_limit=50,
            lock_timeout_seconds=300,
            file_lock_timeout_seconds=30,
            file_write_delay_seconds=0.05
        )

        assert config.workspace_root == "/test/workspace"
        assert config.default_locale == "en"
        assert config.locale_roots == ["locales"]


class TestLoadAppConfig:
    """Test cases for the load_app_config function."""

    def test_load_config_with_valid_yaml_file(self):
        mock_config = {
            "workspace_root": "/custom/workspace",
            "default_locale": "de",
            "days_back": 30,
            "batch_width": 8,
            "locale_roots": ["resources/lang"],
            "logging": {
                "log_level": "DEBUG",
                "log_file_path": "test.log"
            }
        }

        config = _load_with_yaml(mock_config)

        assert config.workspace_root == os.path.abspath("/custom/workspace")
        assert config.default_locale == "de"
        assert config.days_back == 30
        assert config.batch_width == 8
        assert config.locale_roots == ["resources/lang"]
        assert config.state_file_path == os.path.join(os.path.abspath("/custom/workspace"), ".key_recovery", "state.json")

    def test_logging_block_is_passed_to_setup_logger(self):
        mock_config = {"logging": {"log_level": "debug", "log_file_path": "test.log", "log_to_console": False}}

        with patch("builtins.open", mock_open(read_data=yaml.dump(mock_config))):
            with patch("os.path.exists", return_value=True):
                with patch("os.access", return_value=True):
                    with patch("src.app_config.load_dotenv"):
                        with patch("src.app_config.setup_logger") as mock_logger:
                            mock_logger.return_value = MagicMock()
                            with patch.dict(os.environ, {}, clear=True):
                                load_app_config()

        mock_logger.assert_called_once_with("DEBUG", "test.log", False)

    def test_load_config_with_missing_file_uses_defaults(self):
        with patch("src.app_config._load_yaml_config", return_value={}):
            with patch("os.path.exists", return_value=False):
                with patch("src.app_config.setup_logger") as mock_logger:
                    mock_logger.return_value = MagicMock()
                    with patch.dict(os.environ, {}, clear=True):
                        config = load_app_config()

        assert config.workspace_root == os.path.abspath(os.getcwd())
        assert config.default_locale == "en"
        assert config.days_back == 120
        assert config.max_commits_per_file == 15
        assert config.batch_width == 5
        assert config.max_source_files == 500
        assert config.git_rate_limit == 50
        assert config.lock_timeout_seconds == 300
        assert "locales" in config.locale_roots
        assert "node_modules" in config.source_exclude_dirs

    def test_load_config_with_environment_overrides(self):
        mock_config = {"default_locale": "de", "days_back": 30}

        config = _load_with_yaml(mock_config, {
            "KEY_RECOVERY_WORKSPACE": "/env/workspace",
            "KEY_RECOVERY_DEFAULT_LOCALE": "fr",
            "KEY_RECOVERY_DAYS_BACK": "60",
            "KEY_RECOVERY_BATCH_WIDTH": "2"
        })

        assert config.workspace_root == os.path.abspath("/env/workspace")
        assert config.default_locale == "fr"
        assert config.days_back == 60
        assert config.batch_width == 2

    def test_non_numeric_environment_override_is_ignored(self):
        config = _load_with_yaml({"days_back": 30}, {"KEY_RECOVERY_DAYS_BACK": "soon"})
        assert config.days_back == 30

    def test_invalid_yaml_falls_back_to_defaults(self):
        with patch("builtins.open", mock_open(read_data="days_back: [unclosed")):
            with patch("os.path.exists", return_value=True):
                with patch("os.access", return_value=True):
                    with patch("src.app_config.load_dotenv"):
                        with patch("src.app_config.setup_logger") as mock_logger:
                            mock_logger.return_value = MagicMock()
                            with patch.dict(os.environ, {}, clear=True):
                                config = load_app_config()

        assert config.days_back == 120

    def test_non_mapping_yaml_falls_back_to_defaults(self):
        config = _load_with_yaml(["not", "a", "mapping"])
        assert config.default_locale == "en"

    def test_load_config_with_dotenv_file(self):
        mock_config = {"default_locale": "en"}

        with patch("builtins.open", mock_open(read_data=yaml.dump(mock_config))):
            with patch("os.path.exists") as mock_exists:
                # Mock .env file exists in project root
                mock_exists.side_effect = lambda path: path.endswith("/.env") or path.endswith("config.yaml")
                with patch("os.access", return_value=True):
                    with patch("src.app_config.load_dotenv") as mock_load_dotenv:
                        with patch("src.app_config.setup_logger") as mock_logger:
                            mock_logger.return_value = MagicMock()
                            with patch.dict(os.environ, {}, clear=True):
                                load_app_config()

                mock_load_dotenv.assert_called_once()

    def test_custom_config_file_path(self):
        config = _load_with_yaml({"default_locale": "es"}, {"KEY_RECOVERY_CONFIG_FILE": "/custom/config.yaml"})
        assert config.default_locale == "es"

    def test_recovery_options_follow_config(self):
        config = _load_with_yaml({"days_back": 45, "source_max_commits": 20})
        options = build_recovery_options(config, extract_ref="abc123")

        assert options.days_back == 45
        assert options.source_max_commits == 20
        assert options.extract_ref == "abc123"
        assert options.option_names is None
