"""
Entry point for rdagent-reregister.

Re-registers this session host against a new host pool and reboots it. Meant
to be pushed to hosts by remote-management tooling and run unattended, so the
only interaction is the exit status and the run transcript.

Configuration is read from RDAGENT_REREGISTER_CONFIG, the platform system
location, or ./rdagent-reregister.yaml. The registration token may instead be
supplied through RDAGENT_REGISTRATION_TOKEN so it never has to be written to
disk.
"""

import asyncio
import logging
import os
import sys
from typing import List, Optional

from src.i18n import _, set_language
from src.rdagent_reregister.core.config import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_FILENAME,
    TOKEN_ENV_VAR,
    ConfigManager,
)
from src.rdagent_reregister.core.exceptions import ConfigurationError
from src.rdagent_reregister.reregistration.orchestrator import (
    EXIT_CONFIGURATION_ERROR,
    ReregistrationOrchestrator,
)
from src.rdagent_reregister.utils.logging_formatter import UTCTimestampFormatter

logger = logging.getLogger(__name__)


def setup_logging(log_level: str = "INFO") -> None:
    """Send log output to the console; the orchestrator adds the transcript file."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    level = getattr(logging, log_level.upper(), logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(UTCTimestampFormatter())
    root_logger.addHandler(console_handler)
    root_logger.setLevel(level)


def resolve_config_path(argv: List[str]) -> str:
    """Config path from the command line, then the environment, then the default."""
    if len(argv) > 1:
        return argv[1]
    return os.getenv(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILENAME


def main(
    argv: Optional[List[str]] = None,
    orchestrator: Optional[ReregistrationOrchestrator] = None,
) -> int:
    """Load configuration and run the orchestrator. Returns the exit status."""
    argv = sys.argv if argv is None else argv
    setup_logging()

    try:
        config = ConfigManager(
            resolve_config_path(argv), required=not os.getenv(TOKEN_ENV_VAR)
        )
        setup_logging(config.get_log_level())
        set_language(config.get_language())
        settings = config.build_settings()
    except (ConfigurationError, FileNotFoundError, ValueError, RuntimeError) as error:
        logger.critical(_("Cannot load configuration: %s"), error)
        return EXIT_CONFIGURATION_ERROR

    orchestrator = orchestrator or ReregistrationOrchestrator()
    return asyncio.run(orchestrator.run(settings))


if __name__ == "__main__":
    sys.exit(main())
