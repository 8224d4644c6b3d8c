import argparse
import csv
import json
from typing import Dict, List, Optional

import numpy as np


def _stats(values: List[float]) -> Dict[str, float]:
    return {
        'mean': float(np.mean(values)),
        'median': float(np.median(values)),
        'std': float(np.std(values)),
        'min': float(np.min(values)),
        'max': float(np.max(values)),
        'p50': float(np.percentile(values, 50)),
        'p90': float(np.percentile(values, 90)),
        'p95': float(np.percentile(values, 95)),
        'p99': float(np.percentile(values, 99)),
    }


def summarize_metrics(metrics_file: str, output_file: Optional[str] = None) -> Optional[Dict]:
    """
    Compute per-tick statistics from a replay metrics CSV.

    Args:
        metrics_file: CSV written by live_visits --metrics
        output_file: Optional output JSON file
    """
    print(f"[*] Summarizing metrics from: {metrics_file}")

    with open(metrics_file, 'r', newline='') as f:
        rows = list(csv.DictReader(f))

    if not rows:
        print("[WARNING] No ticks found")
        return None

    actions = [int(r['actions']) for r in rows]
    durations = [float(r['tick_duration_ms']) for r in rows]

    summary = {
        'ticks': len(rows),
        'actions': int(np.sum(actions)),
        'failed': int(np.sum([int(r['failed']) for r in rows])),
        'actions_per_tick': _stats(actions),
        'tick_duration_ms': _stats(durations),
    }

    print(f"\nTicks: {summary['ticks']:,}")
    print(f"Actions: {summary['actions']:,} (failed: {summary['failed']:,})")
    for name in ('actions_per_tick', 'tick_duration_ms'):
        s = summary[name]
        print(f"\n{name}:")
        print(f"  Mean:   {s['mean']:.2f}")
        print(f"  Median: {s['median']:.2f}")
        print(f"  Min:    {s['min']:.2f}")
        print(f"  Max:    {s['max']:.2f}")
        print(f"  P90:    {s['p90']:.2f}")
        print(f"  P99:    {s['p99']:.2f}")

    if output_file:
        with open(output_file, 'w') as f:
            json.dump(summary, f, indent=2)
        print(f"\n[OK] Saved to: {output_file}")

    return summary


def main():
    parser = argparse.ArgumentParser(description='Summarize replay metrics')
    parser.add_argument('--metrics', required=True, help='Metrics CSV file')
    parser.add_argument('--output', help='Output JSON file (optional)')

    args = parser.parse_args()

    summarize_metrics(args.metrics, args.output)


if __name__ == '__main__':
    main()
