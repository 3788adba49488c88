"""
System control operations for rdagent-reregister.
Handles command execution and the terminal host reboot.
"""

import asyncio
import logging
import platform
from typing import Any, Dict, List, Optional

from src.i18n import _

COMMAND_TIMEOUT = 60


class SystemControl:
    """Runs host-level control commands."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    async def execute_command(
        self, command: List[str], timeout: int = COMMAND_TIMEOUT
    ) -> Dict[str, Any]:
        """Execute a command with a timeout and collect its output."""
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )

            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(), timeout=timeout
                )
            except asyncio.TimeoutError:
                try:
                    process.kill()
                    await process.wait()
                except ProcessLookupError:
                    pass
                return {
                    "success": False,
                    "error": _("Command timed out after %d seconds: %s")
                    % (timeout, " ".join(command)),
                    "exit_code": -1,
                }

            return {
                "success": process.returncode == 0,
                "result": {
                    "stdout": stdout.decode(errors="replace"),
                    "stderr": stderr.decode(errors="replace"),
                    "exit_code": process.returncode,
                },
                "exit_code": process.returncode,
            }
        except Exception as error:  # pylint: disable=broad-exception-caught
            return {"success": False, "error": str(error)}

    @staticmethod
    def reboot_command(force: bool = True) -> List[str]:
        """Platform reboot command that takes effect immediately."""
        if platform.system().lower() == "windows":
            command = [
                "shutdown",
                "/r",
                "/t",
                "0",
                "/c",
                "Re-registration of the remote desktop agent completed",
            ]
            if force:
                command.append("/f")
            return command
        return ["shutdown", "-r", "now"]

    async def reboot(self, force: bool = True) -> Dict[str, Any]:
        """Reboot the host. Running applications are closed when ``force`` is set."""
        result = await self.execute_command(self.reboot_command(force))
        if result["success"]:
            return {"success": True, "result": _("System reboot initiated")}
        self.logger.error(
            _("Failed to reboot system: %s"),
            result.get("error") or result.get("result", {}).get("stderr", ""),
        )
        return result
