"""
Agent installation through Windows Installer.
"""

import asyncio
import logging
from typing import Optional

from src.i18n import _
from src.rdagent_reregister.core.config import mask_token


class AgentInstaller:
    """Installs the agent MSI bound to a registration token."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def build_command(
        package_path: str, registration_token: str, msi_log_path: Optional[str] = None
    ) -> list:
        """Build the msiexec argument list for a silent, no-restart install."""
        command = [
            "msiexec.exe",
            "/i",
            package_path,
            "/quiet",
            "/norestart",
            f"REGISTRATIONTOKEN={registration_token}",
        ]
        if msi_log_path:
            command.extend(["/l*v", msi_log_path])
        return command

    async def install(
        self,
        package_path: str,
        registration_token: str,
        msi_log_path: Optional[str] = None,
    ) -> int:
        """
        Run the installer and wait for it to finish.

        Returns:
            The msiexec exit code
        """
        command = self.build_command(package_path, registration_token, msi_log_path)
        shown = [
            arg.replace(registration_token, mask_token(registration_token))
            for arg in command
        ]
        self.logger.info(_("Running installer: %s"), " ".join(shown))

        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _stdout, stderr = await process.communicate()

        if process.returncode != 0 and stderr:
            self.logger.debug(
                "Installer stderr: %s",
                stderr.decode(errors="replace").replace(
                    registration_token, mask_token(registration_token)
                ),
            )
        return process.returncode
