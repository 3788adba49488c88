"""
Per-run transcript files and their retention.

Each invocation writes one transcript named from a base name and the start
time, e.g. ``rdagent-reregister_20260119-083000.log``, and optionally a
verbose installer log, ``rdagent-reregister-msi_20260119-083000.txt``. Only
the newest N of each kind are kept in the log directory.
"""

import datetime
import glob
import logging
import os
from typing import List, Optional

from src.i18n import _
from src.rdagent_reregister.utils.logging_formatter import UTCTimestampFormatter

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

RUN_LOG_PATTERN = "{base}_*.log"
MSI_LOG_PATTERN = "{base}-msi_*.txt"


def run_log_filename(base_name: str, started: datetime.datetime) -> str:
    """Deterministic transcript file name for a run started at ``started``."""
    return f"{base_name}_{started.strftime(TIMESTAMP_FORMAT)}.log"


def msi_log_filename(base_name: str, started: datetime.datetime) -> str:
    """Verbose installer log name for a run started at ``started``."""
    return f"{base_name}-msi_{started.strftime(TIMESTAMP_FORMAT)}.txt"


def _unused_path(path: str) -> str:
    root, ext = os.path.splitext(path)
    candidate = path
    index = 1
    while os.path.exists(candidate):
        candidate = f"{root}-{index}{ext}"
        index += 1
    return candidate


def _creation_time(path: str) -> float:
    stat_result = os.stat(path)
    # st_birthtime where the platform has it; st_ctime is creation time on Windows
    return getattr(stat_result, "st_birthtime", stat_result.st_ctime)


def list_run_logs(
    log_dir: str, base_name: str, pattern: str = RUN_LOG_PATTERN
) -> List[str]:
    """Return log paths for ``base_name`` matching ``pattern``, oldest first."""
    name_glob = pattern.format(base=glob.escape(base_name))
    entries = []
    for path in glob.glob(os.path.join(glob.escape(log_dir), name_glob)):
        try:
            entries.append((_creation_time(path), os.path.basename(path), path))
        except OSError as error:
            logger.warning(_("Could not stat run log %s: %s"), path, error)
    entries.sort()
    return [path for _created, _name, path in entries]


def prune_run_logs(
    log_dir: str, base_name: str, retain: int, pattern: str = RUN_LOG_PATTERN
) -> List[str]:
    """
    Delete all but the ``retain`` most recent logs matching ``pattern``.

    Failures are logged as warnings and never raised.

    Returns:
        Paths that were deleted
    """
    try:
        run_logs = list_run_logs(log_dir, base_name, pattern)
    except OSError as error:
        logger.warning(_("Could not enumerate run logs in %s: %s"), log_dir, error)
        return []

    excess = len(run_logs) - max(retain, 0)
    if excess <= 0:
        logger.debug("%d run log(s) present, nothing to prune", len(run_logs))
        return []

    deleted = []
    for path in run_logs[:excess]:
        try:
            os.remove(path)
            deleted.append(path)
        except OSError as error:
            logger.warning(_("Could not delete old run log %s: %s"), path, error)

    logger.info(
        _("Pruned %d old run log(s), keeping the newest %d"), len(deleted), retain
    )
    return deleted


class RunTranscript:
    """Attaches a timestamped file handler to the root logger for one run."""

    def __init__(
        self,
        log_dir: str,
        base_name: str,
        level: int = logging.DEBUG,
        started: Optional[datetime.datetime] = None,
    ):
        self.log_dir = log_dir
        self.base_name = base_name
        self.level = level
        self.started = started or datetime.datetime.now()
        self.path = os.path.join(log_dir, run_log_filename(base_name, self.started))
        self._handler: Optional[logging.Handler] = None

    def open(self) -> str:
        """
        Create the log directory and start writing the transcript.

        A run started within the same second as an earlier one gets a
        numbered name, ``<base>_<stamp>-1.log``, rather than sharing its file.
        """
        os.makedirs(self.log_dir, exist_ok=True)
        self.path = _unused_path(self.path)
        handler = logging.FileHandler(self.path, mode="w", encoding="utf-8")
        handler.setLevel(self.level)
        handler.setFormatter(UTCTimestampFormatter())
        root_logger = logging.getLogger()
        root_logger.addHandler(handler)
        if root_logger.level == logging.NOTSET or root_logger.level > self.level:
            root_logger.setLevel(self.level)
        self._handler = handler
        return self.path

    def close(self) -> None:
        """Flush and detach the transcript handler. Safe to call twice."""
        if self._handler is None:
            return
        logging.getLogger().removeHandler(self._handler)
        self._handler.flush()
        self._handler.close()
        self._handler = None

    @property
    def is_open(self) -> bool:
        """Whether the transcript handler is attached."""
        return self._handler is not None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
