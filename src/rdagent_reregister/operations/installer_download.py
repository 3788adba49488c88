"""
Agent installer download.

Streams the installer to a ``.part`` file next to the destination and
replaces the destination only once the transfer completed, so a stale copy
from an earlier run is never mistaken for a fresh download.
"""

import logging
import os
from typing import Optional

import aiofiles
import aiohttp

from src.i18n import _
from src.rdagent_reregister.core.exceptions import AcquisitionError

CHUNK_SIZE = 1024 * 1024  # 1MB chunks
DOWNLOAD_TIMEOUT = 600


class AgentInstallerDownloader:
    """Downloads the agent installer package."""

    def __init__(
        self, logger: Optional[logging.Logger] = None, timeout: int = DOWNLOAD_TIMEOUT
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.timeout = timeout

    @staticmethod
    def _discard(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    async def fetch(self, url: str, dest_path: str) -> str:
        """
        Download ``url`` to ``dest_path``, overwriting any existing file.

        Returns:
            The destination path

        Raises:
            AcquisitionError: on HTTP error status, transport failure or timeout
        """
        dest_dir = os.path.dirname(dest_path)
        if dest_dir:
            os.makedirs(dest_dir, exist_ok=True)
        partial_path = dest_path + ".part"

        self.logger.info(_("Downloading agent installer from %s"), url)
        downloaded = 0
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise AcquisitionError(
                            _("Installer download failed with HTTP status %s")
                            % response.status
                        )
                    async with aiofiles.open(partial_path, "wb") as file_handle:
                        async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                            await file_handle.write(chunk)
                            downloaded += len(chunk)
        except AcquisitionError:
            self._discard(partial_path)
            raise
        except Exception as error:  # pylint: disable=broad-exception-caught
            self._discard(partial_path)
            raise AcquisitionError(
                _("Installer download failed: %s") % (str(error) or type(error).__name__)
            ) from error

        if downloaded == 0:
            self._discard(partial_path)
            raise AcquisitionError(_("Installer download returned an empty file"))

        os.replace(partial_path, dest_path)
        self.logger.info(
            _("Downloaded %d bytes to %s"), downloaded, dest_path
        )
        return dest_path
