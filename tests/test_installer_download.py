"""
Tests for the agent installer downloader.
"""

# pylint: disable=redefined-outer-name

import asyncio
from unittest.mock import MagicMock, Mock, patch

import aiohttp
import pytest

from src.rdagent_reregister.core.exceptions import AcquisitionError
from src.rdagent_reregister.operations.installer_download import (
    AgentInstallerDownloader,
)

SESSION_PATH = (
    "src.rdagent_reregister.operations.installer_download.aiohttp.ClientSession"
)
URL = "https://downloads.example.com/agent.msi"


@pytest.fixture
def downloader():
    """Create a downloader with a mock logger."""
    return AgentInstallerDownloader(Mock())


def _session_returning(status=200, chunks=(), get_error=None):
    """Build a ClientSession stand-in serving ``chunks`` with ``status``."""

    async def iter_chunked(_size):
        for chunk in chunks:
            yield chunk

    response = MagicMock()
    response.status = status
    response.content.iter_chunked = iter_chunked

    session = MagicMock()
    if get_error is not None:
        session.get.side_effect = get_error
    else:
        session.get.return_value.__aenter__.return_value = response

    session_factory = MagicMock()
    session_factory.return_value.__aenter__.return_value = session
    return session_factory


class TestFetch:
    """Test cases for AgentInstallerDownloader.fetch."""

    @pytest.mark.asyncio
    async def test_download_writes_file(self, downloader, tmp_path):
        """Test a successful streamed download."""
        dest = tmp_path / "agent.msi"

        with patch(SESSION_PATH, _session_returning(chunks=[b"MSI", b"DATA"])):
            result = await downloader.fetch(URL, str(dest))

        assert result == str(dest)
        assert dest.read_bytes() == b"MSIDATA"
        assert not (tmp_path / "agent.msi.part").exists()

    @pytest.mark.asyncio
    async def test_overwrites_stale_copy(self, downloader, tmp_path):
        """Test that an existing installer is replaced."""
        dest = tmp_path / "agent.msi"
        dest.write_bytes(b"STALE INSTALLER")

        with patch(SESSION_PATH, _session_returning(chunks=[b"FRESH"])):
            await downloader.fetch(URL, str(dest))

        assert dest.read_bytes() == b"FRESH"

    @pytest.mark.asyncio
    async def test_creates_destination_directory(self, downloader, tmp_path):
        """Test that a missing temp directory is created."""
        dest = tmp_path / "nested" / "agent.msi"

        with patch(SESSION_PATH, _session_returning(chunks=[b"MSI"])):
            await downloader.fetch(URL, str(dest))

        assert dest.exists()

    @pytest.mark.asyncio
    async def test_http_error_status(self, downloader, tmp_path):
        """Test that a non-200 response raises AcquisitionError."""
        dest = tmp_path / "agent.msi"

        with patch(SESSION_PATH, _session_returning(status=404)):
            with pytest.raises(AcquisitionError, match="404"):
                await downloader.fetch(URL, str(dest))

        assert not dest.exists()
        assert not (tmp_path / "agent.msi.part").exists()

    @pytest.mark.asyncio
    async def test_transport_error(self, downloader, tmp_path):
        """Test that connection failures become AcquisitionError."""
        session_factory = _session_returning(
            get_error=aiohttp.ClientConnectionError("connection refused")
        )

        with patch(SESSION_PATH, session_factory):
            with pytest.raises(AcquisitionError, match="connection refused"):
                await downloader.fetch(URL, str(tmp_path / "agent.msi"))

    @pytest.mark.asyncio
    async def test_timeout(self, downloader, tmp_path):
        """Test that a timeout becomes AcquisitionError."""
        session_factory = _session_returning(get_error=asyncio.TimeoutError())

        with patch(SESSION_PATH, session_factory):
            with pytest.raises(AcquisitionError, match="TimeoutError"):
                await downloader.fetch(URL, str(tmp_path / "agent.msi"))

    @pytest.mark.asyncio
    async def test_empty_body(self, downloader, tmp_path):
        """Test that an empty download is rejected and the old copy is kept."""
        dest = tmp_path / "agent.msi"
        dest.write_bytes(b"OLD")

        with patch(SESSION_PATH, _session_returning(chunks=[])):
            with pytest.raises(AcquisitionError, match="empty"):
                await downloader.fetch(URL, str(dest))

        assert dest.read_bytes() == b"OLD"
