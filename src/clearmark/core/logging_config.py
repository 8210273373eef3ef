"""Logging setup for the Clearmark server.

Log records go to the console and to one file per UTC day under
``logs_dir`` (``2026-10-18.log``), each line formatted as::

    [2026-10-18T09:15:02.311Z] [INFO] Processing watermark removal for image: a.png
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from clearmark.core.config import ClearmarkConfig

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"


class IsoFormatter(logging.Formatter):
    """Formatter that renders ``asctime`` as an ISO-8601 UTC timestamp."""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        moment = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class DailyFileHandler(logging.FileHandler):
    """File handler that switches to ``<YYYY-MM-DD>.log`` when the UTC day changes."""

    def __init__(self, directory: Path, encoding: str = "utf-8") -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._day = self._today()
        super().__init__(self._path_for(self._day), encoding=encoding, delay=True)

    @staticmethod
    def _today() -> str:
        return datetime.now(timezone.utc).date().isoformat()

    def _path_for(self, day: str) -> Path:
        return self.directory / f"{day}.log"

    def emit(self, record: logging.LogRecord) -> None:
        today = self._today()
        if today != self._day:
            self.acquire()
            try:
                self.close()
                self._day = today
                self.baseFilename = str(self._path_for(today).resolve())
            finally:
                self.release()
        super().emit(record)


def setup_logging(config: ClearmarkConfig) -> None:
    """Configure the root logger for console and daily-file output.

    Calling this more than once replaces the handlers installed earlier.
    """
    formatter = IsoFormatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)

    daily = DailyFileHandler(config.logs_dir)
    daily.setFormatter(formatter)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.addHandler(console)
    root.addHandler(daily)
    root.setLevel(config.log_level.upper())
