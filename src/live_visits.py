import argparse
import csv
import os
import signal
import sys
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

import psutil

from errors import ConfigurationError, SourceUnavailableError
from log_utils import SECONDS_IN_DAY
from replay_scheduler import ReplayScheduler, TickResult
from tracker import DEFAULT_SITE_HOST


TOKEN_AUTH_ENV = 'MATOMO_TOKEN_AUTH'

# Global shutdown event
shutdown_event = threading.Event()


def signal_handler(signum, frame):
    """Handle SIGINT (Ctrl+C) gracefully."""
    print("\n🛑 Shutdown signal received. Stopping replay...", flush=True)
    shutdown_event.set()


def get_positive_int_option(args: argparse.Namespace, name: str) -> int:
    """
    Read an optional integer option, empty means 0.

    Raises:
        ConfigurationError: if the value is not a non-negative integer
    """
    value = getattr(args, name.replace('-', '_'))
    if value is None or value == '':
        return 0
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = -1
    if number < 0:
        raise ConfigurationError(
            f"Invalid value for --{name} option, if supplied, must be positive integer."
        )
    return number


def get_site_id(args: argparse.Namespace) -> int:
    site_id = get_positive_int_option(args, 'idsite')
    if site_id == 0:
        raise ConfigurationError("The --idsite option is required and must be a positive integer.")
    return site_id


def get_log_file(args: argparse.Namespace) -> str:
    path = args.log_file
    if not path:
        raise ConfigurationError("The --log-file option is required.")
    if not Path(path).exists():
        raise SourceUnavailableError(f"The '{path}' file does not exist.")
    return path


class MetricsWriter:
    """Write one CSV row of replay and process metrics per tick."""

    HEADER = [
        'timestamp', 'runtime_sec', 'tick', 'actions', 'failed', 'next_wait_sec',
        'tick_duration_ms', 'cpu_percent', 'memory_mb', 'throughput_aps',
    ]

    def __init__(self, metrics_file: str, clock: Callable[[], float] = time.time):
        Path(metrics_file).parent.mkdir(parents=True, exist_ok=True)
        self.clock = clock
        self.start_time = clock()
        self.total_actions = 0
        self.process = psutil.Process()
        self.process.cpu_percent(interval=None)
        self._file = open(metrics_file, 'w', newline='')
        self.writer = csv.writer(self._file)
        self.writer.writerow(self.HEADER)

    def record(self, tick: int, result: TickResult, tick_duration: float):
        runtime = self.clock() - self.start_time
        self.total_actions += result.count or 0
        throughput = self.total_actions / runtime if runtime > 0 else 0

        self.writer.writerow([
            datetime.now().isoformat(),
            f"{runtime:.1f}",
            tick,
            result.count or 0,
            result.failed,
            '' if result.next_wait is None else f"{result.next_wait:.3f}",
            f"{tick_duration * 1000:.1f}",
            f"{self.process.cpu_percent(interval=None):.1f}",
            f"{self.process.memory_info().rss / 1024 / 1024:.1f}",
            f"{throughput:.2f}",
        ])
        self._file.flush()

    def close(self):
        self._file.close()


def run_replay(
    scheduler: ReplayScheduler,
    stop_after: int = 0,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], Optional[bool]] = shutdown_event.wait,
    metrics: Optional[MetricsWriter] = None,
) -> Dict:
    """
    Tick the scheduler until the logs run out, the time budget is spent
    or a shutdown is requested.

    Args:
        scheduler: Scheduler to drive
        stop_after: Maximum run time in seconds (0 = no limit)
        clock: Wall clock
        sleep: Waits the given seconds, a truthy result means interrupted
        metrics: Optional per-tick metrics writer

    Returns:
        Summary with ticks, actions, failed and the stop reason
    """
    start_time = clock()
    summary = {'ticks': 0, 'actions': 0, 'failed': 0, 'reason': None}

    def stop(reason: str, message: str) -> Dict:
        print(message, flush=True)
        summary['reason'] = reason
        return summary

    while True:
        if shutdown_event.is_set():
            return stop('interrupted', "[!] Replay interrupted, exiting.")

        tick_start = clock()
        result = scheduler.tick()
        summary['ticks'] += 1
        if metrics is not None:
            metrics.record(summary['ticks'], result, clock() - tick_start)

        if result.count is None:
            return stop('no_logs', "Found no logs to track for day of month / time of day, exiting.")

        summary['actions'] += result.count
        summary['failed'] += result.failed
        print(f"  tracked {result.count} actions.", flush=True)
        if result.failed:
            print(f"  [WARNING] {result.failed} of them failed.", flush=True)

        if result.next_wait is None:
            return stop('exhausted', "Out of logs, exiting.")

        # no sense in waiting if the next visit falls after stop_after
        if stop_after > 0 and (clock() + result.next_wait) - start_time > stop_after:
            return stop('stop_after', f"{stop_after} seconds reached, exiting.")

        print(f"  sleeping {result.next_wait:.1f}s.", flush=True)
        if sleep(result.next_wait):
            return stop('interrupted', "[!] Replay interrupted, exiting.")

        if stop_after > 0 and clock() - start_time > stop_after:
            return stop('stop_after', f"{stop_after} seconds reached, exiting.")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    now = time.time()
    parser = argparse.ArgumentParser(
        description='Continuously generates visits from a single log file to make it seem like there is real time traffic.'
    )
    parser.add_argument('--idsite', help='(required) The ID of the site to track to.')
    parser.add_argument('--log-file',
                       help='(required) The log file to track visits from. This file MUST have visits in order of time.')
    parser.add_argument('--stop-after', help='If supplied, exit after this many seconds.')
    parser.add_argument('--day-of-month', default=str(datetime.fromtimestamp(now, timezone.utc).day),
                       help='Day of month to replay (default: today). Specify 0 to use every log.')
    parser.add_argument('--time-of-day', default=str(int(now) % SECONDS_IN_DAY),
                       help='Second of day to start replaying logs for (default: now).')
    parser.add_argument('--custom-matomo-url', '--matomo-url', dest='matomo_url', default='http://localhost/',
                       help='Custom Matomo URL to track to.')
    parser.add_argument('--site-host', default=DEFAULT_SITE_HOST,
                       help=f'Host for page view URLs built from non-tracker log lines (default: {DEFAULT_SITE_HOST}).')
    parser.add_argument('--timeout', default='10', help='Request timeout in seconds.')
    parser.add_argument('--token-auth', default=os.environ.get(TOKEN_AUTH_ENV),
                       help=f'Token auth for tracking requests (default: ${TOKEN_AUTH_ENV}).')
    parser.add_argument('--metrics', help='Output metrics CSV (optional)')

    return parser.parse_args(argv)


def build_scheduler(args: argparse.Namespace) -> ReplayScheduler:
    """Validate options and construct the scheduler."""
    site_id = get_site_id(args)
    log_file = get_log_file(args)
    stop_after = get_positive_int_option(args, 'stop-after')
    day_of_month = get_positive_int_option(args, 'day-of-month')
    time_of_day = get_positive_int_option(args, 'time-of-day')
    timeout = get_positive_int_option(args, 'timeout')

    if day_of_month > 31:
        raise ConfigurationError("Invalid value for --day-of-month option, must be between 0 and 31.")
    if time_of_day >= SECONDS_IN_DAY:
        raise ConfigurationError(f"Invalid value for --time-of-day option, must be below {SECONDS_IN_DAY}.")

    return ReplayScheduler(
        log_file,
        site_id,
        time_of_day,
        stop_after or SECONDS_IN_DAY,
        day_of_month,
        args.matomo_url,
        timeout=timeout or 10,
        token_auth=args.token_auth or None,
        site_host=args.site_host,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        scheduler = build_scheduler(args)
        stop_after = get_positive_int_option(args, 'stop-after')
    except (ConfigurationError, SourceUnavailableError) as e:
        print(f"❌ {e}")
        return 1

    if not args.token_auth:
        print(f"[WARNING] No token auth given (--token-auth or ${TOKEN_AUTH_ENV}), "
              "visitor IPs will not be overridden.", flush=True)

    signal.signal(signal.SIGINT, signal_handler)

    print("="*60)
    print("[*] Live visits replay starting")
    print("="*60)
    print(f"Log file: {args.log_file}")
    print(f"Site: {scheduler.site_id}")
    print(f"Day of month: {scheduler.window.day_of_month or 'any'}")
    print(f"Time of day: {scheduler.window.second_of_day}s (+{scheduler.window.duration_seconds}s)")
    print(f"Matomo URL: {args.matomo_url}")
    print(f"Page view host: {args.site_host}")
    print(f"Stop after: {stop_after}s" if stop_after > 0 else "Stop after: never")
    print("="*60)
    print("Generating logs...", flush=True)

    try:
        metrics = MetricsWriter(args.metrics) if args.metrics else None
    except OSError as e:
        scheduler.close()
        print(f"❌ Cannot write metrics file: {e}")
        return 1

    try:
        summary = run_replay(scheduler, stop_after, metrics=metrics)
    finally:
        scheduler.close()
        if metrics is not None:
            metrics.close()

    cursor = scheduler.cursor
    print("\n" + "="*60)
    print("[*] Replay Summary")
    print("="*60)
    print(f"Ticks: {summary['ticks']:,}")
    print(f"Actions tracked: {summary['actions']:,}")
    print(f"Failed sends: {summary['failed']:,}")
    print(f"Log lines read: {cursor.lines_read:,} "
          f"(malformed: {cursor.malformed:,}, out of order: {cursor.out_of_order:,})")
    print("="*60)

    return 0


if __name__ == '__main__':
    sys.exit(main())
