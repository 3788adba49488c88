"""
Pytest configuration and shared fixtures for rdagent-reregister tests.
"""

# pylint: disable=redefined-outer-name

import logging
from unittest.mock import AsyncMock, Mock

import pytest

from src.rdagent_reregister.core.config import ReregistrationSettings
from src.rdagent_reregister.reregistration.orchestrator import (
    ReregistrationOrchestrator,
)
from tests.reregistration_test_base import SUCCESS_EVENT_ID


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Keep handlers added by a test's transcript from leaking into the next test."""
    root_logger = logging.getLogger()
    handlers = root_logger.handlers[:]
    level = root_logger.level
    yield
    for handler in root_logger.handlers[:]:
        if handler not in handlers:
            root_logger.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root_logger.handlers:
            root_logger.addHandler(handler)
    root_logger.setLevel(level)


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every path into a temporary directory."""
    return ReregistrationSettings(
        registration_token="abc123",
        download_url="https://downloads.example.com/agent.msi",
        temp_dir=str(tmp_path / "temp"),
        installer_filename="agent.msi",
        log_dir=str(tmp_path / "logs"),
        log_base_name="reregister",
        log_retention=5,
        agent_product_name="Remote Desktop Services Infrastructure Agent",
        verification_delay=60,
        verification_window=300,
        verification_attempts=1,
        verification_poll_interval=30,
        event_channel="RemoteDesktopServices",
        success_event_id=SUCCESS_EVENT_ID,
        msi_verbose_log=False,
    )


def _write_installer(url, dest_path):  # pylint: disable=unused-argument
    with open(dest_path, "wb") as file_handle:
        file_handle.write(b"MSI")
    return dest_path


@pytest.fixture
def collaborators(tmp_path):
    """Mock collaborators for a host with no installed agent."""
    (tmp_path / "temp").mkdir(exist_ok=True)
    inventory = Mock()
    inventory.list_installed = Mock(return_value=[])
    inventory.uninstall = AsyncMock(return_value=0)

    downloader = Mock()
    downloader.fetch = AsyncMock(side_effect=_write_installer)

    installer = Mock()
    installer.install = AsyncMock(return_value=0)

    event_reader = Mock()
    event_reader.query = AsyncMock(return_value=[])

    system_control = Mock()
    system_control.reboot = AsyncMock(return_value={"success": True})

    return {
        "inventory": inventory,
        "downloader": downloader,
        "installer": installer,
        "event_reader": event_reader,
        "system_control": system_control,
    }


@pytest.fixture
def sleep():
    """Replacement for asyncio.sleep that returns immediately."""
    return AsyncMock(return_value=None)


@pytest.fixture
def orchestrator(collaborators, sleep):
    """Orchestrator wired to mock collaborators."""
    return ReregistrationOrchestrator(sleep=sleep, **collaborators)
