"""
Tests for the process entry point.
"""

# pylint: disable=protected-access

import logging
import os
from unittest.mock import AsyncMock, Mock, patch

import yaml

import main
from src.rdagent_reregister.core.config import CONFIG_ENV_VAR, TOKEN_ENV_VAR


def _orchestrator(exit_code=0):
    orchestrator = Mock()
    orchestrator.run = AsyncMock(return_value=exit_code)
    return orchestrator


class TestResolveConfigPath:
    """Tests for resolve_config_path."""

    def test_command_line_wins(self):
        """Test that an explicit argument is used first."""
        with patch.dict(os.environ, {CONFIG_ENV_VAR: "/env/config.yaml"}):
            assert main.resolve_config_path(["main.py", "/cli/config.yaml"]) == (
                "/cli/config.yaml"
            )

    def test_environment(self):
        """Test the environment variable."""
        with patch.dict(os.environ, {CONFIG_ENV_VAR: "/env/config.yaml"}):
            assert main.resolve_config_path(["main.py"]) == "/env/config.yaml"

    def test_default(self):
        """Test the default file name."""
        with patch.dict(os.environ, {}, clear=True):
            assert main.resolve_config_path(["main.py"]) == "rdagent-reregister.yaml"


class TestMain:
    """Tests for main."""

    def test_runs_orchestrator_with_settings(self, tmp_path):
        """Test that settings from the file reach the orchestrator."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text(
            yaml.safe_dump(
                {
                    "registration": {"token": "abc123"},
                    "paths": {"log_dir": str(tmp_path / "logs")},
                    "logging": {"level": "WARNING"},
                }
            ),
            encoding="utf-8",
        )
        orchestrator = _orchestrator(0)

        with patch.dict(os.environ, {}, clear=True):
            exit_code = main.main(["main.py", str(config_path)], orchestrator)

        assert exit_code == 0
        settings = orchestrator.run.await_args.args[0]
        assert settings.registration_token == "abc123"
        assert settings.log_dir == str(tmp_path / "logs")
        assert logging.getLogger().level == logging.WARNING

    def test_exit_code_propagates(self, tmp_path):
        """Test that the orchestrator's exit code is returned."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("registration:\n  token: ''\n", encoding="utf-8")

        with patch.dict(os.environ, {}, clear=True):
            exit_code = main.main(["main.py", str(config_path)], _orchestrator(1))

        assert exit_code == 1

    def test_missing_config_is_configuration_error(self, tmp_path):
        """Test that a missing config without an environment token exits 1."""
        orchestrator = _orchestrator(0)

        with patch.dict(os.environ, {}, clear=True):
            exit_code = main.main(
                ["main.py", str(tmp_path / "missing.yaml")], orchestrator
            )

        assert exit_code == 1
        orchestrator.run.assert_not_called()

    def test_environment_token_without_config(self, tmp_path):
        """Test that the token may come from the environment alone."""
        orchestrator = _orchestrator(0)

        with patch.dict(os.environ, {TOKEN_ENV_VAR: "env-token"}, clear=True):
            exit_code = main.main(
                ["main.py", str(tmp_path / "missing.yaml")], orchestrator
            )

        assert exit_code == 0
        assert orchestrator.run.await_args.args[0].registration_token == "env-token"

    def test_invalid_setting_is_configuration_error(self, tmp_path):
        """Test that a malformed value exits 1 before running."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text(
            "registration:\n  token: abc123\nverification:\n  delay: soon\n",
            encoding="utf-8",
        )
        orchestrator = _orchestrator(0)

        with patch.dict(os.environ, {}, clear=True):
            exit_code = main.main(["main.py", str(config_path)], orchestrator)

        assert exit_code == 1
        orchestrator.run.assert_not_called()
