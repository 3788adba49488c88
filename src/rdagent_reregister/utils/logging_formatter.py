"""
UTC timestamp logging formatter for rdagent-reregister.

Every line in the console output and the run transcript is prefixed with a
UTC timestamp so transcripts pulled from hosts in different time zones line
up with the event log entries they reference.
"""

import datetime
import logging

DEFAULT_FORMAT = "%(levelname)s: %(message)s"


class UTCTimestampFormatter(logging.Formatter):
    """
    Logging formatter that adds UTC timestamps in square brackets.

    Format: [YYYY-MM-DD HH:MM:SS.sss UTC] LEVEL: message
    """

    def __init__(self, fmt: str = DEFAULT_FORMAT, datefmt=None):
        super().__init__(fmt, datefmt)

    def format(self, record):
        # Timestamp from the record so buffered records keep their own time
        created = datetime.datetime.fromtimestamp(
            record.created, tz=datetime.timezone.utc
        )
        timestamp = created.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

        return f"[{timestamp} UTC] {super().format(record)}"
