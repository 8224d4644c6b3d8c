import csv
import json

from conftest import lines_at
from prepare_log import prepare_log
from summarize_metrics import summarize_metrics


def test_prepare_log_sorts_and_drops_malformed(tmp_path, write_log):
    """Output is time ordered, malformed lines are gone."""
    late, early, same = lines_at([30, 0, 30])
    source = write_log([late, 'not a log line', early, same, ''])
    output = tmp_path / 'prepared' / 'access.log'

    stats = prepare_log(source, str(output))

    assert stats == {'total': 4, 'malformed': 1, 'skipped': 0, 'kept': 3}
    assert output.read_text().splitlines() == [early, late, same]


def test_prepare_log_tracker_only(tmp_path, write_log):
    source = write_log([
        lines_at([0])[0],
        '10.0.0.1 - - [15/Mar/2024:12:00:01 +0000] "GET /matomo.php?idsite=1&rec=1 HTTP/1.1" 204 0 "-" "-"',
    ])
    output = tmp_path / 'tracker.log'

    stats = prepare_log(source, str(output), tracker_only=True)

    assert stats['kept'] == 1
    assert stats['skipped'] == 1
    assert 'matomo.php' in output.read_text()


def test_summarize_metrics(tmp_path):
    metrics_file = tmp_path / 'metrics.csv'
    with open(metrics_file, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(['tick', 'actions', 'failed', 'tick_duration_ms'])
        writer.writerow([1, 2, 0, 10.0])
        writer.writerow([2, 4, 1, 30.0])

    output = tmp_path / 'summary.json'
    summary = summarize_metrics(str(metrics_file), str(output))

    assert summary['ticks'] == 2
    assert summary['actions'] == 6
    assert summary['failed'] == 1
    assert summary['actions_per_tick']['mean'] == 3.0
    assert summary['tick_duration_ms']['max'] == 30.0
    assert json.loads(output.read_text())['actions'] == 6


def test_summarize_empty_metrics(tmp_path):
    metrics_file = tmp_path / 'metrics.csv'
    metrics_file.write_text('tick,actions,failed,tick_duration_ms\n')

    assert summarize_metrics(str(metrics_file)) is None
