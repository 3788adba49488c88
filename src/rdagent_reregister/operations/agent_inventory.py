"""
Installed agent discovery and removal for Windows hosts.

Installed products are read from the Windows Installer Uninstall registry
keys (the same source as Programs and Features) and removed through
msiexec using the product code as the removal handle.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from src.i18n import _

# msiexec exit codes
MSI_SUCCESS = 0
MSI_ERROR_UNKNOWN_PRODUCT = 1605
MSI_SUCCESS_REBOOT_REQUIRED = 3010

UNINSTALL_REGISTRY_PATHS = [
    r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall",
    r"SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall",
]


@dataclass(frozen=True)
class InstalledAgent:
    """An installed product matching the agent's display name."""

    product_code: str
    display_name: str
    version: str = "Unknown"


class AgentInventory:
    """Finds and uninstalls broker agent installations."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def _parse_registry_subkey(
        self, winreg, subkey, subkey_name: str, name_filter: str
    ) -> Optional[InstalledAgent]:
        """Return an InstalledAgent if the subkey's DisplayName matches."""
        try:
            display_name = winreg.QueryValueEx(subkey, "DisplayName")[0]
        except FileNotFoundError:
            return None

        if not display_name or display_name.strip().casefold() != (
            name_filter.strip().casefold()
        ):
            return None

        try:
            version = winreg.QueryValueEx(subkey, "DisplayVersion")[0] or "Unknown"
        except FileNotFoundError:
            version = "Unknown"

        return InstalledAgent(
            product_code=subkey_name,
            display_name=display_name.strip(),
            version=version,
        )

    def list_installed(self, name_filter: str) -> List[InstalledAgent]:
        """
        List installed products whose display name equals ``name_filter``.

        The comparison is case-insensitive. Products registered in both the
        native and WOW6432Node views are reported once.
        """
        try:
            import winreg  # pylint: disable=import-outside-toplevel
        except ImportError:
            self.logger.debug(_("winreg module not available (not on Windows)"))
            return []

        found: List[InstalledAgent] = []
        seen_codes = set()

        for subkey_path in UNINSTALL_REGISTRY_PATHS:
            try:
                with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, subkey_path) as key:
                    subkey_count = winreg.QueryInfoKey(key)[0]
                    for index in range(subkey_count):
                        try:
                            subkey_name = winreg.EnumKey(key, index)
                            with winreg.OpenKey(key, subkey_name) as subkey:
                                agent = self._parse_registry_subkey(
                                    winreg, subkey, subkey_name, name_filter
                                )
                        except OSError:
                            continue
                        if agent and agent.product_code.upper() not in seen_codes:
                            seen_codes.add(agent.product_code.upper())
                            found.append(agent)
            except FileNotFoundError:
                continue
            except PermissionError:
                self.logger.warning(
                    _("No permission to access registry key: %s"), subkey_path
                )
                continue

        self.logger.debug(
            "Found %d installed product(s) named '%s'", len(found), name_filter
        )
        return found

    async def uninstall(self, product_code: str) -> int:
        """
        Remove a product silently without restarting.

        Returns:
            The msiexec exit code
        """
        self.logger.info(_("Uninstalling product %s"), product_code)
        process = await asyncio.create_subprocess_exec(
            "msiexec.exe",
            "/x",
            product_code,
            "/quiet",
            "/norestart",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _stdout, stderr = await process.communicate()

        if process.returncode != MSI_SUCCESS:
            self.logger.debug(
                "msiexec /x %s exited with %s: %s",
                product_code,
                process.returncode,
                stderr.decode(errors="replace") if stderr else "",
            )
        return process.returncode
