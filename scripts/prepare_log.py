import argparse
from pathlib import Path
from typing import Dict, List, Tuple

from log_utils import VisitRecord, is_tracker_request, parse_log_line


def prepare_log(input_file: str, output_file: str, tracker_only: bool = False) -> Dict[str, int]:
    """
    Turn a raw access log into a replay-ready one.

    Malformed lines are dropped and the rest are sorted by time. Lines
    with the same timestamp keep their original order.

    Args:
        input_file: Path to raw log file
        output_file: Path to output log
        tracker_only: Keep only hits on the Matomo tracker endpoint

    Returns:
        Line statistics
    """
    print(f"📄 Preparing: {input_file}")

    entries: List[Tuple[VisitRecord, str]] = []
    stats = {'total': 0, 'malformed': 0, 'skipped': 0, 'kept': 0}

    with open(input_file, 'r', encoding='utf-8', errors='ignore') as f:
        for i, line in enumerate(f):
            line = line.strip()
            if not line:
                continue
            stats['total'] += 1

            record = parse_log_line(line)
            if record is None:
                stats['malformed'] += 1
            elif tracker_only and not is_tracker_request(record.path):
                stats['skipped'] += 1
            else:
                entries.append((record, line))

            if i % 100000 == 0 and i > 0:
                print(f"  Read {i:,} lines...")

    entries.sort(key=lambda entry: entry[0].timestamp)
    stats['kept'] = len(entries)

    print(f"\n  📊 Statistics:")
    print(f"     Total lines: {stats['total']:,}")
    print(f"     Malformed lines: {stats['malformed']:,}")
    if tracker_only:
        print(f"     Non-tracker lines: {stats['skipped']:,}")
    print(f"     Kept lines: {stats['kept']:,}")

    output_path = Path(output_file)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_file, 'w') as f:
        for _, line in entries:
            f.write(line + '\n')

    print(f"\n  ✅ Saved to: {output_file}")
    return stats


def main():
    parser = argparse.ArgumentParser(
        description='Prepare an Apache access log for replay (drops malformed lines, sorts by time)'
    )
    parser.add_argument('--input', required=True, help='Input log file')
    parser.add_argument('--output', required=True, help='Output replay-ready log')
    parser.add_argument('--tracker-only', action='store_true',
                       help='Keep only matomo.php / piwik.php tracking requests')

    args = parser.parse_args()

    if not Path(args.input).exists():
        print(f"❌ Error: Input file not found: {args.input}")
        return

    prepare_log(args.input, args.output, args.tracker_only)


if __name__ == '__main__':
    main()
