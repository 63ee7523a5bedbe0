#!/usr/bin/env python3
"""
SwapDesk - Main Entrypoint

USAGE:
    python main.py serve
    python main.py submit --wallet w1 --from SOL --to USDC --amount 10 [--execute]
    python main.py execute <order_id>
    python main.py get <order_id>
    python main.py list --wallet w1 [--limit 20]
    python main.py watch <order_id> [--url ws://127.0.0.1:8765]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from swapdesk.app import RunOptions, run_app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SwapDesk - swap order execution service",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        '--config-dir',
        type=str,
        default='config',
        help='Directory holding config.yaml and .env.local (default: config)'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default=None,
        help='Console log level (overrides config)'
    )

    subparsers = parser.add_subparsers(dest='command', help='Command')
    subparsers.required = True

    # Service process
    subparsers.add_parser('serve', help='Run execution worker and status endpoint')

    # Submission
    submit_parser = subparsers.add_parser('submit', help='Submit a swap order')
    submit_parser.add_argument('--wallet', required=True, help='Owner wallet')
    submit_parser.add_argument('--from', dest='input_token', required=True, help='Input token')
    submit_parser.add_argument('--to', dest='output_token', required=True, help='Output token')
    submit_parser.add_argument('--amount', required=True, help='Input amount')
    submit_parser.add_argument(
        '--execute',
        action='store_true',
        help='Execute in this process instead of queueing for the service'
    )

    # Execution and queries
    execute_parser = subparsers.add_parser('execute', help='Execute a pending order in this process')
    execute_parser.add_argument('order_id')

    get_parser = subparsers.add_parser('get', help='Show one order')
    get_parser.add_argument('order_id')

    list_parser = subparsers.add_parser('list', help="List a wallet's orders, newest first")
    list_parser.add_argument('--wallet', required=True)
    list_parser.add_argument('--limit', type=int, default=50)

    # Live status
    watch_parser = subparsers.add_parser('watch', help='Follow live status from a serving process')
    watch_parser.add_argument('order_id')
    watch_parser.add_argument('--url', default=None, help='Status endpoint (default: from config)')

    return parser


def main():
    """Main CLI entrypoint."""
    args = build_parser().parse_args()

    command_args = {
        k: v for k, v in vars(args).items()
        if k not in ('command', 'config_dir', 'log_level')
    }
    opts = RunOptions(
        command=args.command,
        config_dir=Path(args.config_dir),
        args=command_args,
        log_level=args.log_level,
    )

    sys.exit(run_app(opts))


if __name__ == '__main__':
    main()
