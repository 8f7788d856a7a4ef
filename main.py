#!/usr/bin/env python3
"""
NavDesk - Main Entrypoint

USAGE:
    python main.py monitor --config config/config.yaml
    python main.py monitor --config config/config.yaml --positions my_positions.csv
    python main.py monitor --config config/config.yaml --run-once
    python main.py monitor --config config/config.yaml --cycles 30
"""

from __future__ import annotations

import sys
import argparse
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from navdesk.runtime.app import RunOptions, run_app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="NavDesk - Real-Time Portfolio Valuation",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    subparsers = parser.add_subparsers(dest='command', help='Command')
    subparsers.required = True

    monitor_parser = subparsers.add_parser('monitor', help='Run the real-time portfolio monitor')
    monitor_parser.add_argument(
        '--config',
        type=str,
        default='config/config.yaml',
        help='Path to config file (default: config/config.yaml)'
    )
    monitor_parser.add_argument(
        '--positions',
        type=str,
        default=None,
        help='Position CSV (default: positions_file from config)'
    )
    monitor_parser.add_argument(
        '--securities',
        type=str,
        default=None,
        help='Security catalog YAML (default: securities_file from config)'
    )
    stop_group = monitor_parser.add_mutually_exclusive_group()
    stop_group.add_argument(
        '--run-once',
        action='store_true',
        help='Run one update cycle and exit (for testing)'
    )
    stop_group.add_argument(
        '--cycles',
        type=int,
        default=None,
        help='Stop after this many update cycles'
    )

    return parser


def main(argv=None):
    """Main CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cycles is not None and args.cycles < 1:
        parser.error("--cycles must be at least 1")

    config_path = Path(args.config)
    if not config_path.exists():
        print(f"ERROR: Config file not found: {config_path}")
        print(f"Create config file or specify --config path")
        sys.exit(1)

    opts = RunOptions(
        config_path=config_path,
        positions_path=Path(args.positions) if args.positions else None,
        securities_path=Path(args.securities) if args.securities else None,
        run_once=args.run_once,
        cycles=args.cycles,
    )

    print(f"Starting NavDesk portfolio monitor...")
    print(f"Config: {config_path}")
    print(f"Press Ctrl+C to stop")
    print("-" * 60)

    exit_code = run_app(opts)
    sys.exit(exit_code)


if __name__ == '__main__':
    main()
