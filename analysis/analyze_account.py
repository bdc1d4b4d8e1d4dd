#!/usr/bin/env python3
"""
CLI tool for generating account reports.
Usage: python analysis/analyze_account.py ACCOUNT [ACCOUNT ...] --start YYYY-MM-DD --end YYYY-MM-DD [options]
"""

import sys
import sqlite3
import argparse
import json
import logging
from datetime import date
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from analysis.analysis_job import analyze_account, batch_analyze_accounts
from analysis.config import LOT_METHODS, ConfigError, get_fee_schedule, get_settings, load_fee_schedules


def main():
    """Main CLI entry point."""
    try:
        settings = get_settings()
    except ConfigError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    parser = argparse.ArgumentParser(
        description='Generate investment reports for one or more accounts',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python analysis/analyze_account.py ACC-001 --start 2024-01-01 --end 2024-03-31
  python analysis/analyze_account.py ACC-001 --start 2024-01-01 --end 2024-12-31 --lot-method LIFO
  python analysis/analyze_account.py ACC-001 ACC-002 --start 2024-01-01 --end 2024-06-30 --quiet
        """
    )

    parser.add_argument('accounts', nargs='+', metavar='ACCOUNT', help='Account identifier(s)')
    parser.add_argument('--start',
                       type=date.fromisoformat,
                       required=True,
                       help='Start of the reporting window (YYYY-MM-DD)')
    parser.add_argument('--end',
                       type=date.fromisoformat,
                       required=True,
                       help='End of the reporting window (YYYY-MM-DD)')
    parser.add_argument('--db-path',
                       default=settings['db_path'],
                       help=f"Path to SQLite database (default: {settings['db_path']})")
    parser.add_argument('--output',
                       help='Output JSON file path for a single account, or directory for several '
                            f"(default: {settings['output_dir']})")
    parser.add_argument('--lot-method',
                       choices=LOT_METHODS,
                       default=settings['lot_method'],
                       help=f"Tax lot selection method (default: {settings['lot_method']})")
    parser.add_argument('--fee-schedules',
                       default=settings['fee_schedules_path'],
                       help=f"Fee schedule YAML (default: {settings['fee_schedules_path']})")
    parser.add_argument('--quiet', '-q',
                       action='store_true',
                       help='Minimal output (just success/failure)')

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings['log_level'], logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    if args.start > args.end:
        print(f"❌ --start {args.start} is after --end {args.end}", file=sys.stderr)
        sys.exit(1)

    # Validate database exists
    if not Path(args.db_path).exists():
        print(f"❌ Database not found: {args.db_path}", file=sys.stderr)
        sys.exit(1)

    try:
        fee_schedules = load_fee_schedules(args.fee_schedules)
    except ConfigError as e:
        print(f"❌ {e}", file=sys.stderr)
        sys.exit(1)

    if not args.quiet:
        print(f"🔍 Reporting on {', '.join(args.accounts)}")
        print(f"📊 Database: {args.db_path}")
        print(f"📅 Window: {args.start} to {args.end}")
        print(f"🧾 Lot method: {args.lot_method}")
        print()

    try:
        conn = sqlite3.connect(args.db_path)
    except Exception as e:
        print(f"❌ Database connection failed: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if len(args.accounts) == 1:
            account_id = args.accounts[0]
            if args.output is None:
                output_path = Path(settings['output_dir']) / f'{account_id}_{args.start}_{args.end}.json'
            else:
                output_path = Path(args.output)

            result = analyze_account(
                conn=conn,
                account_id=account_id,
                output_path=output_path,
                start_date=args.start,
                end_date=args.end,
                fee_schedule=get_fee_schedule(fee_schedules, account_id),
                lot_method=args.lot_method,
                qc_aum_tolerance=settings['qc_aum_tolerance']
            )
            results = [result]
        else:
            output_dir = Path(args.output or settings['output_dir'])
            batch = batch_analyze_accounts(
                conn=conn,
                account_ids=args.accounts,
                output_dir=output_dir,
                start_date=args.start,
                end_date=args.end,
                fee_schedules=fee_schedules,
                lot_method=args.lot_method,
                qc_aum_tolerance=settings['qc_aum_tolerance']
            )
            results = batch['results']

        failures = [r for r in results if r['status'] != 'completed']

        for result in results:
            if result['status'] == 'completed':
                if args.quiet:
                    print(f"✅ {result['account_id']} report complete: {result['output_path']}")
                else:
                    print(f"✅ {result['account_id']}: QC {result['qc_status']}, "
                          f"{result['duration_seconds']:.1f}s")
                    print(f"💾 Results saved to: {result['output_path']}")
                    _show_quick_summary(result['output_path'])
            else:
                print(f"❌ Report failed for {result['account_id']}: {result['error_message']}",
                      file=sys.stderr)

        sys.exit(1 if failures else 0)

    except Exception as e:
        print(f"❌ Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)

    finally:
        conn.close()


def _show_quick_summary(output_path: str):
    """Show quick summary of the written report."""
    try:
        with open(output_path, 'r') as f:
            report = json.load(f)

        aum = report['aum']
        twr = report['performance']['twr']
        fees = report['fees']['management']
        concentration = report['holdings']['concentration']

        print(f"📋 Quick Summary for {report['account_id']}:")
        print(f"   AUM: ${aum['bop']:,.2f} → ${aum['eop']:,.2f} "
              f"(net flows ${aum['net_flows']:,.2f}, market P&L ${aum['market_pnl']:,.2f})")
        print(f"   TWR: {twr['total_return_percent']:+.2f}% "
              f"({twr['annualized_return_percent']:+.2f}% annualized)")
        print(f"   Fees accrued: ${fees['total_fees']:,.2f}")
        if concentration['largest_holding_symbol']:
            print(f"   Largest holding: {concentration['largest_holding_symbol']} "
                  f"({concentration['largest_holding']:.1f}%)")

        for check in report['quality_control']['checks']:
            if check['status'] != 'PASS':
                print(f"   ⚠️  {check['check']}: {'; '.join(check['messages'])}")
        print()

    except Exception as e:
        print(f"⚠️  Could not show summary: {e}")


if __name__ == '__main__':
    main()
