import argparse

from common.core.config import settings
from common.workers.launcher import WorkerLauncher
from packages.billing.workers.sweep_worker import BillingSweepWorker


def setup_cli():
    """Setup CLI arguments and return parsed args with factory parameters."""
    parser = argparse.ArgumentParser(description="Billing Sweep Worker")
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.sweep_interval_seconds,
        help=f"Seconds between sweeps (default: {settings.sweep_interval_seconds})",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep and exit (for cron-style scheduling)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )

    args = parser.parse_args()

    factory_args = ()
    factory_kwargs = {"interval_seconds": args.interval, "run_once_only": args.once}

    return args, factory_args, factory_kwargs


def main():
    """Main entry point with command-line argument support."""
    WorkerLauncher().run_with_cli(
        worker_factory=BillingSweepWorker,
        worker_name="Billing Sweep Worker",
        cli_setup_func=setup_cli,
    )


if __name__ == "__main__":
    main()
