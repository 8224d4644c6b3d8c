from datetime import datetime, timedelta, timezone

import pytest
import requests

from errors import SendFailure


BASE_TIME = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


def log_line(when: datetime, path: str = '/index.html', ip: str = '10.0.0.1') -> str:
    stamp = when.strftime('%d/%b/%Y:%H:%M:%S %z')
    return f'{ip} - - [{stamp}] "GET {path} HTTP/1.1" 200 512 "-" "Mozilla/5.0"'


def lines_at(offsets, base: datetime = BASE_TIME):
    return [log_line(base + timedelta(seconds=s), path=f'/page{i}') for i, s in enumerate(offsets)]


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSender:
    """Records sends, fails for paths listed in fail_paths."""

    def __init__(self, fail_paths=(), clock=None, cost=0.0):
        self.sent = []
        self.fail_paths = set(fail_paths)
        self.clock = clock
        self.cost = cost
        self.closed = False

    def __call__(self, record):
        if self.clock is not None:
            self.clock.advance(self.cost)
        if record.path in self.fail_paths:
            raise SendFailure(f"timeout for {record.path}", record)
        self.sent.append(record)
        return 204

    def close(self):
        self.closed = True


class FakeResponse:
    def __init__(self, status_code=204):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeSession:
    """Stands in for requests.Session, recording every GET."""

    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.calls = []
        self.closed = False

    def get(self, url, params=None, timeout=None):
        self.calls.append({'url': url, 'params': params, 'timeout': timeout})
        if self.error is not None:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


@pytest.fixture
def write_log(tmp_path):
    """Write log lines to a temporary file and return its path."""
    def _write(lines, name='access.log'):
        path = tmp_path / name
        path.write_text('\n'.join(lines) + '\n')
        return str(path)
    return _write


@pytest.fixture
def clock():
    return FakeClock()
