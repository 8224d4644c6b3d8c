"""
Tick-driven replay of an access log as live tracking requests.

The scheduler anchors the log's recorded time to the wall clock at the
first record it accepts. Each tick sends every record whose recorded
time has come due and reports how long the caller should wait until the
next one. Sleeping between ticks is left to the caller.
"""
import time
from enum import Enum
from typing import Callable, NamedTuple, Optional

from errors import ReplayStateError, SendFailure
from log_cursor import LogCursor, ReplayWindow
from log_utils import VisitRecord
from tracker import DEFAULT_SITE_HOST, TrackingClient


class ReplayState(Enum):
    NOT_STARTED = 'not_started'
    RUNNING = 'running'
    EXHAUSTED = 'exhausted'
    NO_MATCHING_LOGS = 'no_matching_logs'
    CLOSED = 'closed'


TERMINAL_STATES = (ReplayState.EXHAUSTED, ReplayState.NO_MATCHING_LOGS, ReplayState.CLOSED)


class TickResult(NamedTuple):
    """
    Outcome of one tick.

    count is None when no log matched the window. next_wait is None when
    there is nothing left to replay. count includes failed sends.
    """

    count: Optional[int]
    next_wait: Optional[float]
    failed: int = 0


class ReplayClock:
    """Maps recorded log time onto the wall clock."""

    def __init__(self):
        self.origin_virtual_time: Optional[float] = None
        self.origin_wall_time: Optional[float] = None
        self.last_emitted_virtual_time: Optional[float] = None

    def start(self, virtual_time: float, wall_time: float):
        self.origin_virtual_time = virtual_time
        self.origin_wall_time = wall_time

    def virtual_now(self, wall_time: float) -> float:
        return self.origin_virtual_time + (wall_time - self.origin_wall_time)

    def mark_emitted(self, virtual_time: float):
        if self.last_emitted_virtual_time is None or virtual_time > self.last_emitted_virtual_time:
            self.last_emitted_virtual_time = virtual_time


class ReplayScheduler:
    """
    Replays visits from a single log file so they appear to be live traffic.

    Args:
        log_file: Path to an access log ordered by time
        site_id: Site to track visits to
        time_of_day: Second of day to start replaying from
        window_seconds: How far past time_of_day to keep replaying
        day_of_month: Day of month to replay, 0 for every day
        matomo_url: Base URL of the Matomo instance
        timeout: Per-request timeout in seconds
        token_auth: Token sent with every tracking request
        clock: Wall clock, defaults to time.time
        sender: Callable that tracks one record and raises SendFailure on
            error, defaults to a TrackingClient
        site_host: Host used for page view URLs of non-tracker log lines

    Raises:
        SourceUnavailableError: if the log file cannot be opened
    """

    def __init__(
        self,
        log_file: str,
        site_id: int,
        time_of_day: int,
        window_seconds: int,
        day_of_month: int,
        matomo_url: str,
        timeout: float = 10,
        token_auth: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        sender: Optional[Callable[[VisitRecord], object]] = None,
        site_host: str = DEFAULT_SITE_HOST,
    ):
        self.window = ReplayWindow(day_of_month, time_of_day, window_seconds)
        self.site_id = site_id
        self.clock = clock
        self.replay_clock = ReplayClock()
        self.state = ReplayState.NOT_STARTED
        self.total_sent = 0
        self.total_failed = 0

        self.cursor = LogCursor.open(log_file)
        self.sender = sender or TrackingClient(matomo_url, site_id, token_auth, timeout, site_host=site_host)
        self.token_auth = token_auth
        self._pending: Optional[VisitRecord] = None

    def set_token_auth(self, token_auth: str):
        """Use a custom token for the tracking requests that follow."""
        self.token_auth = token_auth
        if isinstance(self.sender, TrackingClient):
            self.sender.token_auth = token_auth

    def tick(self) -> TickResult:
        """
        Send every record that is due and report the wait until the next one.

        Returns:
            TickResult(None, None) if no log matches the window,
            TickResult(count, None) once the log is exhausted,
            TickResult(count, seconds) otherwise

        Raises:
            ReplayStateError: if the replay already finished or was closed
        """
        if self.state in TERMINAL_STATES:
            raise ReplayStateError(f"Replay is {self.state.value}, no more ticks allowed")

        if self.state is ReplayState.NOT_STARTED:
            self._pending = self.cursor.next_matching(self.window)
            if self._pending is None:
                self._finish(ReplayState.NO_MATCHING_LOGS)
                return TickResult(None, None)
            self.replay_clock.start(self._pending.timestamp, self.clock())
            self.state = ReplayState.RUNNING

        now_virtual = self.replay_clock.virtual_now(self.clock())

        count = 0
        failed = 0
        while self._pending is not None and self._pending.timestamp <= now_virtual:
            if not self._send(self._pending):
                failed += 1
            count += 1
            self.replay_clock.mark_emitted(self._pending.timestamp)
            self._pending = self.cursor.next_matching(self.window)

        self.total_sent += count
        self.total_failed += failed

        if self._pending is None:
            self._finish(ReplayState.EXHAUSTED)
            return TickResult(count, None, failed)

        return TickResult(count, max(0.0, self._pending.timestamp - now_virtual), failed)

    def _send(self, record: VisitRecord) -> bool:
        try:
            self.sender(record)
        except SendFailure as e:
            print(f"[WARNING] {e}", flush=True)
            return False
        return True

    def _finish(self, state: ReplayState):
        self.state = state
        self._release()

    def _release(self):
        self.cursor.close()
        close = getattr(self.sender, 'close', None)
        if close is not None:
            close()

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def close(self):
        """Release the log file and HTTP session. Safe to call more than once."""
        if self.state not in TERMINAL_STATES:
            self.state = ReplayState.CLOSED
            self._release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
