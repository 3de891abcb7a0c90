#!/usr/bin/env python3
"""
Repair the tooth chart: replay completed treatments/appointments through the
reconciler, then re-derive every tooth colour from its status.
Safe to re-run; a run stopped by --time-budget is continued by the next one.

Run with: python3 backfill.py [--pass replay] [--pass colors] [--patient P001]
                              [--time-budget 300] [--json]
"""
import argparse
import json
import sys

from dentalsync import create_app
from dentalsync.services.backfill import PASSES, run_backfill


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Replay clinical events and repair tooth chart colours.")
    parser.add_argument('--pass', dest='passes', action='append', choices=PASSES,
                        help="Pass to run (repeatable). Default: all passes, replay first.")
    parser.add_argument('--patient', dest='patient_id', default=None,
                        help="Restrict the run to one patient id.")
    parser.add_argument('--time-budget', type=float, default=None,
                        help="Seconds before stopping early (default: BACKFILL_TIME_BUDGET, 0 = unlimited).")
    parser.add_argument('--json', action='store_true', help="Print the summary as JSON.")
    return parser.parse_args(argv)


def print_summary(results):
    print("=" * 60)
    print("Tooth Chart Backfill")
    print("=" * 60)
    for name, summary in results.items():
        flag = " (partial - re-run to continue)" if summary['partial'] else ""
        print(f"\n{name}{flag}")
        print("-" * 60)
        for key in ('processed', 'updated', 'unchanged', 'skipped', 'ambiguous',
                    'conflicted', 'not_found', 'failed', 'duration_seconds'):
            print(f"  {key:18} {summary[key]}")
    print()
    print("=" * 60)


def main(argv=None):
    args = parse_args(argv)
    app = create_app()

    with app.app_context():
        budget = args.time_budget if args.time_budget is not None else app.config.get('BACKFILL_TIME_BUDGET')
        results = run_backfill(passes=args.passes or PASSES, patient_id=args.patient_id, time_budget=budget)

    if args.json:
        print(json.dumps(results, indent=2))
    else:
        print_summary(results)

    failed = any(summary['failed'] for summary in results.values())
    return 1 if failed else 0


if __name__ == '__main__':
    sys.exit(main())
