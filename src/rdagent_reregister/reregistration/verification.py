"""
Classification of agent event records after a fresh install.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from src.rdagent_reregister.operations.event_reader import AgentEvent

ERROR_SEVERITIES = frozenset({"error", "critical"})


class VerificationStatus(Enum):
    """Outcome of checking the agent's event channel."""

    SUCCESS = "success"
    ERRORS_FOUND = "errors_found"
    NO_EVENTS = "no_events"
    INDETERMINATE = "indeterminate"


@dataclass
class VerificationResult:
    """Classified view of the events read during verification."""

    status: VerificationStatus
    success_event: Optional[AgentEvent] = None
    error_events: List[AgentEvent] = field(default_factory=list)
    events: List[AgentEvent] = field(default_factory=list)
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        """Whether the broker connection was confirmed."""
        return self.status is VerificationStatus.SUCCESS


def classify_events(
    events: Sequence[AgentEvent], success_event_id: int
) -> VerificationResult:
    """
    Classify a batch of agent events.

    A success record wins over any error records; the newest success record
    is reported when there are several.
    """
    events = sorted(events, key=lambda event: event.timestamp)
    if not events:
        return VerificationResult(VerificationStatus.NO_EVENTS)

    successes = [event for event in events if event.event_id == success_event_id]
    errors = [event for event in events if event.severity in ERROR_SEVERITIES]

    if successes:
        return VerificationResult(
            VerificationStatus.SUCCESS,
            success_event=successes[-1],
            error_events=errors,
            events=events,
        )
    if errors:
        return VerificationResult(
            VerificationStatus.ERRORS_FOUND, error_events=errors, events=events
        )
    return VerificationResult(VerificationStatus.INDETERMINATE, events=events)
