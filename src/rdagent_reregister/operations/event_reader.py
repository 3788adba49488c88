"""
Windows event log reader for the agent's log channel.

Events are fetched with PowerShell ``Get-WinEvent`` and returned as
``AgentEvent`` records with UTC timestamps and lower-case severities.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.i18n import _
from src.rdagent_reregister.core.exceptions import EventQueryError

QUERY_TIMEOUT = 120

NO_EVENTS_MARKER = "No events were found"

# Windows event Level values
SEVERITY_BY_LEVEL = {
    0: "information",  # LogAlways
    1: "critical",
    2: "error",
    3: "warning",
    4: "information",
    5: "verbose",
}

_DOTNET_DATE = re.compile(r"/Date\((-?\d+)(?:[+-]\d{4})?\)/")
_FRACTION = re.compile(r"\.(\d+)")


@dataclass(frozen=True)
class AgentEvent:
    """A record from the agent's event log channel."""

    event_id: int
    timestamp: datetime
    severity: str
    message: str


def parse_event_timestamp(value: Any) -> datetime:
    """Parse ISO-8601 or ``/Date(ms)/`` timestamps emitted by ConvertTo-Json."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        dotnet = _DOTNET_DATE.search(text)
        if dotnet:
            return datetime.fromtimestamp(int(dotnet.group(1)) / 1000, tz=timezone.utc)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        # .NET round-trip format carries 7 fractional digits
        text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _severity(record: Dict[str, Any]) -> str:
    level = record.get("Level")
    if isinstance(level, int) and level in SEVERITY_BY_LEVEL:
        return SEVERITY_BY_LEVEL[level]
    display = record.get("LevelDisplayName")
    return str(display).strip().lower() if display else "information"


def parse_events(output: str) -> List[AgentEvent]:
    """Turn ConvertTo-Json output into AgentEvent records."""
    if not output or not output.strip():
        return []
    try:
        data = json.loads(output)
    except json.JSONDecodeError as error:
        raise EventQueryError(_("Could not parse event log output: %s") % error) from error

    # A single event is serialized as an object rather than a list
    if isinstance(data, dict):
        data = [data]

    events = []
    for record in data or []:
        if not isinstance(record, dict) or record.get("Id") is None:
            continue
        events.append(
            AgentEvent(
                event_id=int(record["Id"]),
                timestamp=parse_event_timestamp(record.get("TimeCreated")),
                severity=_severity(record),
                message=(record.get("Message") or "").strip(),
            )
        )
    return events


class EventLogReader:
    """Reads recent records from a Windows event log channel."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def build_script(channel: str, since: datetime) -> str:
        """PowerShell pipeline selecting events in ``channel`` newer than ``since``."""
        since_utc = since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        channel_literal = channel.replace("'", "''")
        return (
            "Get-WinEvent -FilterHashtable @{"
            f"LogName='{channel_literal}'; "
            f"StartTime=[DateTime]::Parse('{since_utc}')"
            "} -ErrorAction Stop | Select-Object Id, Level, LevelDisplayName, "
            "@{Name='TimeCreated';Expression={$_.TimeCreated.ToUniversalTime().ToString('o')}}, "
            "Message | ConvertTo-Json -Depth 2"
        )

    async def query(self, channel: str, since: datetime) -> List[AgentEvent]:
        """
        Return events in ``channel`` created at or after ``since``.

        An empty list means the channel had no matching records.

        Raises:
            EventQueryError: the channel could not be read or parsed
        """
        self.logger.debug("Querying event log %s since %s", channel, since.isoformat())
        try:
            process = await asyncio.create_subprocess_exec(
                "powershell",
                "-NoProfile",
                "-NonInteractive",
                "-Command",
                self.build_script(channel, since),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as error:
            raise EventQueryError(_("PowerShell is not available: %s") % error) from error

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=QUERY_TIMEOUT
            )
        except asyncio.TimeoutError as error:
            try:
                process.kill()
                await process.wait()
            except ProcessLookupError:
                pass
            raise EventQueryError(
                _("Event log query timed out after %d seconds") % QUERY_TIMEOUT
            ) from error

        error_text = stderr.decode(errors="replace") if stderr else ""
        if process.returncode != 0:
            if NO_EVENTS_MARKER in error_text:
                return []
            raise EventQueryError(
                _("Event log query for %s failed: %s")
                % (channel, error_text.strip() or f"exit code {process.returncode}")
            )

        events = parse_events(stdout.decode(errors="replace") if stdout else "")
        self.logger.debug("Read %d event(s) from %s", len(events), channel)
        return events
