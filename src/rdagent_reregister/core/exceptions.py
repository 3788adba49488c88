"""
Error types raised while re-registering a session host.

Only ConfigurationError is allowed to end a run with a failure exit code.
Every other error is logged by the orchestrator and the run still proceeds
to cleanup and reboot.
"""


class ReregistrationError(Exception):
    """Base class for re-registration failures."""


class ConfigurationError(ReregistrationError):
    """Missing or placeholder registration token, or unusable settings."""


class AcquisitionError(ReregistrationError):
    """The agent installer could not be downloaded."""


class InstallationError(ReregistrationError):
    """The agent installer exited with a failure code."""

    def __init__(self, message: str, exit_code: int):
        super().__init__(message)
        self.exit_code = exit_code


class EventQueryError(ReregistrationError):
    """The agent event log channel could not be read."""
