import re
from datetime import datetime, timezone
from typing import NamedTuple, Optional


SECONDS_IN_DAY = 86400

# Apache Combined Log Format: IP - - [timestamp] "METHOD /path HTTP/1.1" status bytes "referer" "user-agent"
CLF_PATTERN = re.compile(
    r'^(\S+) \S+ \S+ \[([^\]]+)\] "(\S+) (\S+)(?: \S+)?" (\d{3}) (\S+)(?: "([^"]*)" "([^"]*)")?'
)
CLF_TIME_FORMAT = '%d/%b/%Y:%H:%M:%S %z'


class VisitRecord(NamedTuple):
    """One parsed access log line."""

    timestamp: float
    second_of_day: int
    day_of_month: int
    ip: str
    method: str
    path: str
    status: int
    bytes: int = 0
    referer: str = ''
    user_agent: str = ''


def second_of_day(dt: datetime) -> int:
    """Seconds elapsed since midnight on the clock the datetime was written in."""
    return dt.hour * 3600 + dt.minute * 60 + dt.second


def parse_log_timestamp(timestamp_str: str) -> Optional[datetime]:
    """
    Parse a CLF timestamp such as ``10/Oct/2023:13:55:36 -0700``.

    A missing UTC offset is read as UTC. Returns None if the value
    cannot be parsed.
    """
    try:
        return datetime.strptime(timestamp_str, CLF_TIME_FORMAT)
    except ValueError:
        pass
    try:
        return datetime.strptime(timestamp_str.split()[0] + ' +0000', CLF_TIME_FORMAT)
    except (ValueError, IndexError):
        return None


def parse_log_line(line: str) -> Optional[VisitRecord]:
    """
    Parse an Apache access log line (Combined or Common Log Format).

    The day of month and second of day are derived from the absolute
    timestamp in UTC, the same clock the replay window is given in.

    Args:
        line: Raw log line

    Returns:
        VisitRecord or None if the line is malformed
    """
    line = line.strip()
    if not line:
        return None

    match = CLF_PATTERN.match(line)
    if not match:
        return None

    ip, timestamp_str, method, path, status, bytes_sent, referer, user_agent = match.groups()

    recorded_at = parse_log_timestamp(timestamp_str)
    if recorded_at is None:
        return None
    recorded_utc = recorded_at.astimezone(timezone.utc)

    try:
        bytes_sent = int(bytes_sent) if bytes_sent != '-' else 0
    except ValueError:
        bytes_sent = 0

    return VisitRecord(
        timestamp=recorded_at.timestamp(),
        second_of_day=second_of_day(recorded_utc),
        day_of_month=recorded_utc.day,
        ip=ip,
        method=method,
        path=path,
        status=int(status),
        bytes=bytes_sent,
        referer=referer if referer and referer != '-' else '',
        user_agent=user_agent if user_agent and user_agent != '-' else '',
    )


def is_tracker_request(path: str) -> bool:
    """Check if a request target is a hit on the Matomo tracker endpoint."""
    base, _, query = path.partition('?')
    return bool(query) and base.rstrip('/').endswith(('/matomo.php', '/piwik.php'))
