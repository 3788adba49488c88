"""
Re-registration orchestrator.

Moves a session host to a new host pool in one linear pass:

    precondition -> remove agents -> download -> install -> verify
                 -> cleanup -> reboot

Once the precondition check has passed, cleanup and reboot always run,
whatever failed before them. A host that reboots into a still-broken state
can be picked up by the next diagnostic pass; a host stuck half way cannot.
"""

import asyncio
import dataclasses
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from src.i18n import _
from src.rdagent_reregister.core.config import (
    ReregistrationSettings,
    validate_registration_token,
)
from src.rdagent_reregister.core.exceptions import (
    ConfigurationError,
    InstallationError,
    ReregistrationError,
)
from src.rdagent_reregister.operations.agent_installer import AgentInstaller
from src.rdagent_reregister.operations.agent_inventory import (
    MSI_ERROR_UNKNOWN_PRODUCT,
    MSI_SUCCESS,
    MSI_SUCCESS_REBOOT_REQUIRED,
    AgentInventory,
    InstalledAgent,
)
from src.rdagent_reregister.operations.event_reader import EventLogReader
from src.rdagent_reregister.operations.installer_download import (
    AgentInstallerDownloader,
)
from src.rdagent_reregister.operations.system_control import SystemControl
from src.rdagent_reregister.reregistration.verification import (
    VerificationResult,
    VerificationStatus,
    classify_events,
)
from src.rdagent_reregister.utils.run_log import (
    MSI_LOG_PATTERN,
    RUN_LOG_PATTERN,
    RunTranscript,
    msi_log_filename,
    prune_run_logs,
)

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_CONFIGURATION_ERROR = 1
EXIT_VERIFICATION_FAILED = 2

INSTALL_SUCCESS_CODES = frozenset({MSI_SUCCESS, MSI_SUCCESS_REBOOT_REQUIRED})


class RemovalOutcome(Enum):
    """How removal of one installed agent ended."""

    REMOVED = "removed"
    ALREADY_ABSENT = "already_absent"
    FAILED = "failed"


@dataclass(frozen=True)
class RemovalResult:
    """Removal attempt for one installed agent."""

    agent: InstalledAgent
    exit_code: Optional[int]
    outcome: RemovalOutcome


def classify_removal(exit_code: Optional[int]) -> RemovalOutcome:
    """Map an uninstaller exit code onto a removal outcome."""
    if exit_code in INSTALL_SUCCESS_CODES:
        return RemovalOutcome.REMOVED
    if exit_code == MSI_ERROR_UNKNOWN_PRODUCT:
        return RemovalOutcome.ALREADY_ABSENT
    return RemovalOutcome.FAILED


class ReregistrationOrchestrator:  # pylint: disable=too-many-instance-attributes
    """Runs the remove, install, verify and reboot workflow on the local host."""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        inventory: Optional[AgentInventory] = None,
        downloader: Optional[AgentInstallerDownloader] = None,
        installer: Optional[AgentInstaller] = None,
        event_reader: Optional[EventLogReader] = None,
        system_control: Optional[SystemControl] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.inventory = inventory or AgentInventory()
        self.downloader = downloader or AgentInstallerDownloader()
        self.installer = installer or AgentInstaller()
        self.event_reader = event_reader or EventLogReader()
        self.system_control = system_control or SystemControl()
        self._sleep = sleep
        self.removal_results: List[RemovalResult] = []
        self.verification: Optional[VerificationResult] = None

    async def run(self, settings: ReregistrationSettings) -> int:
        """
        Execute one re-registration run.

        Returns:
            EXIT_CONFIGURATION_ERROR when the registration token is unusable
            (nothing is touched in that case), EXIT_VERIFICATION_FAILED when
            the strict verification policy is enabled and the broker
            connection was not confirmed (the reboot is skipped), otherwise
            EXIT_SUCCESS after the reboot has been issued.
        """
        transcript = RunTranscript(settings.log_dir, settings.log_base_name)
        try:
            transcript.open()
        except OSError as error:
            logger.warning(
                _("Could not open run transcript %s, logging to console only: %s"),
                transcript.path,
                error,
            )
        logger.info(_("Starting agent re-registration, transcript %s"), transcript.path)

        try:
            token = validate_registration_token(settings.registration_token)
        except ConfigurationError as error:
            logger.critical(_("Aborting before any change to the host: %s"), error)
            transcript.close()
            return EXIT_CONFIGURATION_ERROR
        settings = dataclasses.replace(settings, registration_token=token)

        exit_code = EXIT_SUCCESS
        reboot = True
        try:
            await self.remove_existing_agents(settings)
            await self.acquire_installer(settings)
            await self.install_agent(settings)
            self.verification = await self.verify_registration(settings)
            if (
                settings.fail_on_verification_failure
                and not self.verification.succeeded
            ):
                logger.error(
                    _("Broker connection not confirmed and strict verification "
                      "is enabled; the host will not be rebooted")
                )
                exit_code = EXIT_VERIFICATION_FAILED
                reboot = False
        except ReregistrationError as error:
            logger.error(_("Re-registration failed: %s"), error)
        except Exception as error:  # pylint: disable=broad-exception-caught
            logger.error(
                _("Unexpected error during re-registration: %s"), error, exc_info=True
            )
        finally:
            self.cleanup(settings)
            if reboot:
                logger.info(_("Rebooting host"))
            transcript.close()
            if reboot:
                await self.reboot()

        return exit_code

    async def remove_existing_agents(
        self, settings: ReregistrationSettings
    ) -> List[RemovalResult]:
        """Uninstall every installed copy of the agent; failures never abort."""
        try:
            agents = self.inventory.list_installed(settings.agent_product_name)
        except Exception as error:  # pylint: disable=broad-exception-caught
            logger.warning(
                _("Could not read installed software, continuing with install: %s"),
                error,
            )
            agents = []

        if not agents:
            logger.info(
                _("No installed '%s' found, nothing to remove"),
                settings.agent_product_name,
            )
            self.removal_results = []
            return self.removal_results

        results = []
        for agent in agents:
            logger.info(
                _("Removing %s %s (%s)"),
                agent.display_name,
                agent.version,
                agent.product_code,
            )
            try:
                exit_code = await self.inventory.uninstall(agent.product_code)
            except Exception as error:  # pylint: disable=broad-exception-caught
                logger.debug("Uninstaller for %s failed to run: %s", agent.product_code, error)
                exit_code = None
            results.append(
                RemovalResult(agent, exit_code, classify_removal(exit_code))
            )

        self.removal_results = results
        self._report_removals(results)
        return results

    @staticmethod
    def _report_removals(results: List[RemovalResult]) -> None:
        for result in results:
            code = result.agent.product_code
            if result.outcome is RemovalOutcome.REMOVED:
                logger.info(_("Removed %s"), code)
            elif result.outcome is RemovalOutcome.ALREADY_ABSENT:
                logger.warning(
                    _("%s was already absent (exit code %s), treating as removed"),
                    code,
                    result.exit_code,
                )
            else:
                logger.warning(
                    _("Removal of %s failed (exit code %s), continuing with reinstall"),
                    code,
                    result.exit_code,
                )

        failed = sum(1 for r in results if r.outcome is RemovalOutcome.FAILED)
        if failed:
            logger.warning(
                _("%d of %d agent removal(s) failed"), failed, len(results)
            )

    async def acquire_installer(self, settings: ReregistrationSettings) -> str:
        """Download a fresh installer. Raises AcquisitionError on failure."""
        return await self.downloader.fetch(
            settings.download_url, settings.installer_path
        )

    def _msi_log_path(self, settings: ReregistrationSettings) -> Optional[str]:
        if not settings.msi_verbose_log:
            return None
        return os.path.join(
            settings.log_dir, msi_log_filename(settings.log_base_name, datetime.now())
        )

    async def install_agent(self, settings: ReregistrationSettings) -> int:
        """Install the downloaded agent with the registration token."""
        exit_code = await self.installer.install(
            settings.installer_path,
            settings.registration_token,
            self._msi_log_path(settings),
        )
        if exit_code not in INSTALL_SUCCESS_CODES:
            raise InstallationError(
                _("Agent installer exited with code %s") % exit_code, exit_code
            )
        logger.info(_("Agent installed (exit code %s)"), exit_code)
        return exit_code

    async def _read_events(self, settings: ReregistrationSettings):
        since = datetime.now(timezone.utc) - timedelta(
            seconds=settings.verification_window
        )
        try:
            return await self.event_reader.query(settings.event_channel, since)
        except Exception as error:  # pylint: disable=broad-exception-caught
            logger.warning(
                _("Could not read event log %s: %s"), settings.event_channel, error
            )
            return []

    async def verify_registration(
        self, settings: ReregistrationSettings
    ) -> VerificationResult:
        """
        Wait for the agent's own broker connection attempt and check its outcome.

        The agent connects in the background after install. After the initial
        delay the event channel is polled up to ``verification_attempts`` times,
        stopping as soon as the success event shows up. The outcome is only
        logged.
        """
        logger.info(
            _("Waiting %s seconds for the agent to contact the broker"),
            settings.verification_delay,
        )
        await self._sleep(settings.verification_delay)

        result = VerificationResult(VerificationStatus.NO_EVENTS)
        for attempt in range(1, settings.verification_attempts + 1):
            events = await self._read_events(settings)
            result = classify_events(events, settings.success_event_id)
            result.attempts = attempt
            if result.succeeded:
                break
            if attempt < settings.verification_attempts:
                logger.debug(
                    "Verification attempt %d was %s, polling again in %s seconds",
                    attempt,
                    result.status.value,
                    settings.verification_poll_interval,
                )
                await self._sleep(settings.verification_poll_interval)

        self._report_verification(result, settings)
        return result

    @staticmethod
    def _report_verification(
        result: VerificationResult, settings: ReregistrationSettings
    ) -> None:
        if result.status is VerificationStatus.SUCCESS:
            event = result.success_event
            logger.info(
                _("VERIFICATION SUCCESS: broker connection confirmed by event %s at %s: %s"),
                event.event_id,
                event.timestamp.isoformat(),
                event.message,
            )
        elif result.status is VerificationStatus.NO_EVENTS:
            logger.warning(
                _("No events in %s during the last %s seconds, manual verification needed"),
                settings.event_channel,
                settings.verification_window,
            )
        elif result.status is VerificationStatus.ERRORS_FOUND:
            logger.error(
                _("VERIFICATION FAILED: no event %s, %d error event(s) found, "
                  "likely root cause follows"),
                settings.success_event_id,
                len(result.error_events),
            )
            for event in result.error_events:
                logger.error(
                    _("Event %s at %s [%s]: %s"),
                    event.event_id,
                    event.timestamp.isoformat(),
                    event.severity,
                    event.message,
                )
        else:
            logger.warning(
                _("VERIFICATION INDETERMINATE: %d event(s) read, none with id %s "
                  "and no errors; check the agent status manually"),
                len(result.events),
                settings.success_event_id,
            )

    def cleanup(self, settings: ReregistrationSettings) -> None:
        """Remove the installer artifact and prune old transcripts. Never raises."""
        installer_path = settings.installer_path
        for path in (installer_path, installer_path + ".part"):
            try:
                if os.path.exists(path):
                    os.remove(path)
                    logger.info(_("Deleted %s"), path)
            except OSError as error:
                logger.warning(_("Could not delete %s: %s"), path, error)

        for pattern in (RUN_LOG_PATTERN, MSI_LOG_PATTERN):
            try:
                prune_run_logs(
                    settings.log_dir,
                    settings.log_base_name,
                    settings.log_retention,
                    pattern,
                )
            except Exception as error:  # pylint: disable=broad-exception-caught
                logger.warning(_("Run log cleanup failed: %s"), error)

    async def reboot(self) -> None:
        """Force an immediate reboot. A failure is logged, never raised."""
        try:
            result = await self.system_control.reboot(force=True)
        except Exception as error:  # pylint: disable=broad-exception-caught
            logger.error(_("Failed to reboot system: %s"), error)
            return
        if not result.get("success"):
            logger.error(_("Reboot was not accepted: %s"), result.get("error", result))
