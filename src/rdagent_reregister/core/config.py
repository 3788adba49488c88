"""
Configuration management for rdagent-reregister.
Reads the YAML configuration file and turns it into the immutable settings
bundle consumed by the re-registration orchestrator.
"""

import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml

from src.i18n import _
from src.rdagent_reregister.core.exceptions import ConfigurationError

CONFIG_ENV_VAR = "RDAGENT_REREGISTER_CONFIG"
TOKEN_ENV_VAR = "RDAGENT_REGISTRATION_TOKEN"
LOG_DIR_ENV_VAR = "RDAGENT_REREGISTER_LOG_DIR"

DEFAULT_CONFIG_FILENAME = "rdagent-reregister.yaml"

DEFAULT_DOWNLOAD_URL = (
    "https://query.prod.cms.rt.microsoft.com/cms/api/am/binary/RWrmXv"
)
DEFAULT_INSTALLER_FILENAME = "Microsoft.RDInfra.RDAgent.Installer-x64.msi"
DEFAULT_AGENT_PRODUCT_NAME = "Remote Desktop Services Infrastructure Agent"
DEFAULT_EVENT_CHANNEL = "RemoteDesktopServices"
DEFAULT_SUCCESS_EVENT_ID = 3701
DEFAULT_LOG_BASE_NAME = "rdagent-reregister"
DEFAULT_LOG_RETENTION = 5
DEFAULT_VERIFICATION_DELAY = 60
DEFAULT_VERIFICATION_WINDOW = 300
DEFAULT_VERIFICATION_ATTEMPTS = 1
DEFAULT_VERIFICATION_POLL_INTERVAL = 30

# Values shipped in templates and runbooks that must never reach the installer
PLACEHOLDER_TOKENS = frozenset(
    {
        "<registration_token>",
        "your_registration_token",
        "replace_me",
        "paste_token_here",
    }
)


def _system_config_path() -> str:
    if os.name == "nt":  # Windows
        return r"C:\ProgramData\RDAgentReregister\rdagent-reregister.yaml"
    return "/etc/" + DEFAULT_CONFIG_FILENAME


def _default_log_dir() -> str:
    env_log_dir = os.environ.get(LOG_DIR_ENV_VAR)
    if env_log_dir:
        return env_log_dir
    if os.name == "nt":
        return r"C:\ProgramData\RDAgentReregister\Logs"
    return os.path.join(os.getcwd(), "logs")


def validate_registration_token(token: Optional[str]) -> str:
    """
    Check that a registration token is usable.

    Returns:
        The token with surrounding whitespace removed

    Raises:
        ConfigurationError: token is not text, is empty, or is one of the
            template placeholders
    """
    if token is not None and not isinstance(token, str):
        raise ConfigurationError(
            _("Registration token must be text, got %s; quote it in the "
              "configuration file") % type(token).__name__
        )
    cleaned = (token or "").strip()
    if not cleaned:
        raise ConfigurationError(_("Registration token is missing"))
    if cleaned.lower() in PLACEHOLDER_TOKENS:
        raise ConfigurationError(
            _("Registration token is still set to the placeholder value '%s'")
            % cleaned
        )
    return cleaned


def mask_token(token: Optional[str]) -> str:
    """Render a token for log output without revealing it."""
    if not token:
        return "<empty>"
    if len(token) <= 8:
        return "****"
    return f"{token[:4]}****{token[-4:]}"


@dataclass(frozen=True)
class ReregistrationSettings:  # pylint: disable=too-many-instance-attributes
    """Immutable input for a single re-registration run."""

    registration_token: str = field(repr=False)
    download_url: str = DEFAULT_DOWNLOAD_URL
    temp_dir: str = field(default_factory=tempfile.gettempdir)
    installer_filename: str = DEFAULT_INSTALLER_FILENAME
    log_dir: str = field(default_factory=_default_log_dir)
    log_base_name: str = DEFAULT_LOG_BASE_NAME
    log_retention: int = DEFAULT_LOG_RETENTION
    agent_product_name: str = DEFAULT_AGENT_PRODUCT_NAME
    verification_delay: float = DEFAULT_VERIFICATION_DELAY
    verification_window: float = DEFAULT_VERIFICATION_WINDOW
    verification_attempts: int = DEFAULT_VERIFICATION_ATTEMPTS
    verification_poll_interval: float = DEFAULT_VERIFICATION_POLL_INTERVAL
    event_channel: str = DEFAULT_EVENT_CHANNEL
    success_event_id: int = DEFAULT_SUCCESS_EVENT_ID
    fail_on_verification_failure: bool = False
    msi_verbose_log: bool = True

    @property
    def installer_path(self) -> str:
        """Local path the installer is downloaded to."""
        return os.path.join(self.temp_dir, self.installer_filename)


class ConfigManager:
    """Manages configuration for rdagent-reregister."""

    def __init__(
        self, config_file: str = DEFAULT_CONFIG_FILENAME, required: bool = True
    ):
        self.logger = logging.getLogger(__name__)
        self.required = required
        self.config_file = self._determine_config_path(config_file)
        self.config_data: Dict[str, Any] = {}
        self.load_config()

    def _determine_config_path(self, default_filename: str) -> str:
        """
        Determine configuration file path with security priority.

        Priority order (security-first):
        1. An explicitly named file (absolute path, or any name other than
           the default)
        2. Platform-specific system config location
        3. ./rdagent-reregister.yaml (local config)
        """
        if (
            os.path.isabs(default_filename)
            or default_filename != DEFAULT_CONFIG_FILENAME
        ):
            return default_filename

        system_config = _system_config_path()
        local_config = "./" + DEFAULT_CONFIG_FILENAME

        if os.path.exists(system_config):
            return system_config
        if os.path.exists(local_config):
            return local_config
        return system_config

    def load_config(self) -> None:
        """Load configuration from YAML file."""
        if not os.path.exists(self.config_file):
            if not self.required:
                self.logger.debug(
                    "No configuration file at %s, using defaults", self.config_file
                )
                self.config_data = {}
                return
            raise FileNotFoundError(
                _("Configuration file '%s' not found. Expected locations: %s")
                % (
                    self.config_file,
                    f"{_system_config_path()} or ./{DEFAULT_CONFIG_FILENAME}",
                )
            )

        try:
            with open(self.config_file, "r", encoding="utf-8") as file:
                self.config_data = yaml.safe_load(file) or {}
        except yaml.YAMLError as e:
            raise ValueError(_("Invalid YAML in configuration file: %s") % e) from e
        except Exception as e:
            raise RuntimeError(_("Failed to load configuration file: %s") % e) from e

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key_path: Dot-separated path to the configuration key (e.g., 'agent.download_url')
            default: Default value if key is not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split(".")
        value = self.config_data

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def get_registration_token(self) -> str:
        """Get the registration token, preferring the environment over the file."""
        token = os.environ.get(TOKEN_ENV_VAR) or self.get("registration.token", "")
        # Non-text YAML values are left for validate_registration_token to reject
        return token.strip() if isinstance(token, str) else token

    def get_log_level(self) -> str:
        """Get logging level (first entry of a pipe-separated list)."""
        level = str(self.get("logging.level", "INFO"))
        return level.split("|")[0].strip().upper()

    def get_language(self) -> str:
        """Get configured language/locale."""
        return self.get("i18n.language", "en")

    def _number(self, key_path: str, default, cast):
        raw = self.get(key_path, default)
        try:
            value = cast(raw)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                _("Configuration value '%s' is not a number: %r") % (key_path, raw)
            ) from e
        if value < 0:
            raise ConfigurationError(
                _("Configuration value '%s' must not be negative") % key_path
            )
        return value

    def build_settings(self) -> ReregistrationSettings:
        """Build the immutable settings bundle for the orchestrator."""
        log_retention = self._number(
            "logging.retain", DEFAULT_LOG_RETENTION, int
        )
        attempts = self._number(
            "verification.attempts", DEFAULT_VERIFICATION_ATTEMPTS, int
        )
        if log_retention < 1 or attempts < 1:
            raise ConfigurationError(
                _("logging.retain and verification.attempts must be at least 1")
            )

        return ReregistrationSettings(
            registration_token=self.get_registration_token(),
            download_url=self.get("agent.download_url", DEFAULT_DOWNLOAD_URL),
            temp_dir=self.get("paths.temp_dir") or tempfile.gettempdir(),
            installer_filename=self.get(
                "agent.installer_filename", DEFAULT_INSTALLER_FILENAME
            ),
            log_dir=self.get("paths.log_dir") or _default_log_dir(),
            log_base_name=self.get("logging.base_name", DEFAULT_LOG_BASE_NAME),
            log_retention=log_retention,
            agent_product_name=self.get(
                "agent.product_name", DEFAULT_AGENT_PRODUCT_NAME
            ),
            verification_delay=self._number(
                "verification.delay", DEFAULT_VERIFICATION_DELAY, float
            ),
            verification_window=self._number(
                "verification.window", DEFAULT_VERIFICATION_WINDOW, float
            ),
            verification_attempts=attempts,
            verification_poll_interval=self._number(
                "verification.poll_interval",
                DEFAULT_VERIFICATION_POLL_INTERVAL,
                float,
            ),
            event_channel=self.get("verification.channel", DEFAULT_EVENT_CHANNEL),
            success_event_id=self._number(
                "verification.success_event_id", DEFAULT_SUCCESS_EVENT_ID, int
            ),
            fail_on_verification_failure=bool(
                self.get("verification.fail_on_failure", False)
            ),
            msi_verbose_log=bool(self.get("logging.msi_verbose_log", True)),
        )
