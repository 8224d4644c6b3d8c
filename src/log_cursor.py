import os
from pathlib import Path
from typing import IO, Iterator, NamedTuple, Optional

from errors import SourceUnavailableError
from log_utils import SECONDS_IN_DAY, VisitRecord, parse_log_line


class ReplayWindow(NamedTuple):
    """Day of month / time of day selection. day_of_month 0 matches every day."""

    day_of_month: int
    second_of_day: int
    duration_seconds: int


def in_time_window(second: int, start: int, duration: int) -> bool:
    """
    Check if a second of day falls in [start, start + duration).

    Windows that run past midnight wrap around to the start of the day.
    """
    if duration >= SECONDS_IN_DAY:
        return True
    if duration <= 0:
        return False
    return (second - start) % SECONDS_IN_DAY < duration


def matches_window(record: VisitRecord, window: ReplayWindow) -> bool:
    """Day of month constraint first, then the time of day window."""
    if window.day_of_month and record.day_of_month != window.day_of_month:
        return False
    return in_time_window(record.second_of_day, window.second_of_day, window.duration_seconds)


class LogCursor:
    """
    Forward-only, single pass reader over an access log.

    Records come out in file order; a record whose timestamp is earlier
    than the last one returned is dropped. Reopen the file to restart.
    """

    def __init__(self, handle: IO[str], path: str = ''):
        self.path = path
        self._handle: Optional[IO[str]] = handle
        self._last_timestamp: Optional[float] = None
        self.exhausted = False
        self.lines_read = 0
        self.malformed = 0
        self.out_of_order = 0

    @classmethod
    def open(cls, path: str) -> 'LogCursor':
        """
        Open a log file for replay.

        Raises:
            SourceUnavailableError: if the file is missing or unreadable
        """
        source = Path(path)
        if not source.is_file():
            raise SourceUnavailableError(f"The '{path}' file does not exist.")
        if not os.access(source, os.R_OK):
            raise SourceUnavailableError(f"The '{path}' file is not readable.")
        try:
            handle = open(source, 'r', encoding='utf-8', errors='ignore')
        except OSError as e:
            raise SourceUnavailableError(f"Cannot open '{path}': {e}") from e
        return cls(handle, str(path))

    def records(self) -> Iterator[VisitRecord]:
        """Yield well-formed, time-ordered records until the file runs out."""
        while self._handle is not None:
            line = self._handle.readline()
            if not line:
                self.exhausted = True
                self.close()
                return

            self.lines_read += 1
            record = parse_log_line(line)
            if record is None:
                if line.strip():
                    self.malformed += 1
                continue

            if self._last_timestamp is not None and record.timestamp < self._last_timestamp:
                self.out_of_order += 1
                continue

            self._last_timestamp = record.timestamp
            yield record

    def next_matching(self, window: ReplayWindow) -> Optional[VisitRecord]:
        """Return the next record inside the window, or None once exhausted."""
        for record in self.records():
            if matches_window(record, window):
                return record
        self.exhausted = True
        return None

    @property
    def closed(self) -> bool:
        return self._handle is None

    def close(self):
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
