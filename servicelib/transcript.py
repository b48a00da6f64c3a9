"""
Session transcripts: a log file per script run, capturing everything the `servicelib` loggers emit,
plus retention of old transcripts.
"""

from datetime import datetime, timedelta
import glob
import logging
import os
import os.path
from typing import List, Optional


LOG = logging.getLogger(__name__)

RETENTION_DAYS = 30

PATTERNS = ("*-[0-9][0-9][0-9][0-9][0-9][0-9][0-9][0-9]-[0-9][0-9][0-9][0-9][0-9][0-9].log",
            "summary-[0-9][0-9][0-9][0-9][0-9][0-9][0-9][0-9].txt")
"""
File names written by transcripts and daily summaries, the only files `purge` will remove.
"""

FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class TranscriptHandler(logging.FileHandler):
    """
    A :class:`logging.FileHandler` writing to a new timestamped file in the given directory, named
    after the script that opened it (e.g. ``service-control-20260101-093000.log``).

    Records may carry an optional `operator` attribute (via ``extra=``), which is included in the
    line when present.
    """

    def __init__(self, directory: str, label: str, now: Optional[datetime] = None):
        os.makedirs(directory, exist_ok=True)
        stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
        self.path = os.path.join(directory, "{}-{}.log".format(label, stamp))
        super().__init__(self.path, encoding="utf-8", delay=True)
        self.setFormatter(logging.Formatter(FORMAT))

    def format(self, record):
        line = super().format(record)
        operator = getattr(record, "operator", None)
        return "{} [{}]".format(line, operator) if operator else line


def start(directory: str, label: str, level: int = logging.DEBUG) -> TranscriptHandler:
    """
    Attach a transcript handler to the package logger, so all modules' output is captured.
    """
    handler = TranscriptHandler(directory, label)
    handler.setLevel(level)
    root = logging.getLogger("servicelib")
    root.addHandler(handler)
    if root.level == logging.NOTSET or root.level > level:
        root.setLevel(level)
    LOG.debug("Transcript started: %s", handler.path)
    return handler


def stop(handler: TranscriptHandler) -> None:
    logging.getLogger("servicelib").removeHandler(handler)
    handler.close()


def purge(directory: str, days: int = RETENTION_DAYS, now: Optional[datetime] = None) -> List[str]:
    """
    Delete transcript and summary files last modified more than the given number of days ago.
    Other files in the directory are left alone.

    Returns the paths that were removed.  Files that can't be removed are logged and skipped.
    """
    cutoff = ((now or datetime.now()) - timedelta(days=days)).timestamp()
    removed = []
    paths = set()
    for pattern in PATTERNS:
        paths.update(glob.glob(os.path.join(directory, pattern)))
    for path in sorted(paths):
        try:
            if os.path.getmtime(path) >= cutoff:
                continue
            os.remove(path)
        except OSError as ex:
            LOG.warning("Couldn't purge %r: %s", path, ex)
            continue
        LOG.debug("Purged old transcript %r", path)
        removed.append(path)
    return removed
