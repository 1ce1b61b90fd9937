"""
Data Wallet - Entry Point

Runs the access-control demo against the configured network and prints a
step-by-step report.
"""

import asyncio
import argparse
import logging
import sys

from .config import load_config
from .core.errors import DataWalletError
from .core.pipeline import PipelineReport, StepStatus
from .network import build_services
from .scenario import AccessControlScenario

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

STATUS_MARKS = {
    StepStatus.SUCCEEDED: "✅",
    StepStatus.DENIED_AS_EXPECTED: "🔒",
    StepStatus.FAILED: "❌",
    StepStatus.UNEXPECTED_SUCCESS: "⚠️ ",
    StepStatus.SKIPPED: "⏭️ ",
}


def print_report(report: PipelineReport) -> None:
    """Print a formatted report"""
    print(f"\n{'='*70}")
    print(f"  {report.name.upper()} - {'PASSED' if report.ok else 'FAILED'}")
    print(f"{'='*70}\n")

    for index, result in enumerate(report.results, start=1):
        label = result.description or result.name
        print(f"{STATUS_MARKS[result.status]} {index:2d}. {label} [{result.status.value}]")
        if result.error is not None:
            print(f"       {type(result.error).__name__}: {result.error}")
        if result.blocked_by:
            print(f"       requires: {', '.join(result.blocked_by)}")

    counts = ", ".join(f"{k}={v}" for k, v in report.counts().items() if v)
    print(f"\n{counts}\n")


async def main() -> int:
    parser = argparse.ArgumentParser(
        description="Data Wallet access-control demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run fully in-process (no network access)
  python -m data_wallet

  # Run against testnet with keys from wallet.yaml
  python -m data_wallet --config wallet.yaml --network testnet

  # Enable debug logging
  python -m data_wallet --debug
"""
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to wallet.yaml (default: search ./wallet.yaml, ./config/wallet.yaml)'
    )

    parser.add_argument(
        '--network', '-n',
        choices=['local', 'testnet'],
        help='Override the configured network'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(args.config, network=args.network)
    except (DataWalletError, FileNotFoundError) as e:
        logger.error(f"Configuration error: {e}")
        print(f"\n❌ Error: {e}")
        return 1

    try:
        async with await build_services(config) as services:
            report = await AccessControlScenario(config, services).run()
    except DataWalletError as e:
        logger.error(f"Could not reach {config.network.name} services: {e}")
        print(f"\n❌ Error: {e}")
        return 1

    print_report(report)
    return 0 if report.ok else 1


def run():
    """Entry point for console script"""
    sys.exit(asyncio.run(main()))


if __name__ == '__main__':
    run()
