"""
Main application entry point.
"""

import asyncio
import logging
import signal
import sys

from dotenv import load_dotenv

load_dotenv()

from callwatch.app import CallWatchApp
from callwatch.config import load_config
from callwatch.database.connection import Database
from callwatch.exceptions import AlreadyRunning, EmptySelection, QuotaExceeded
from callwatch.monitoring.results import BatchResult

logger = logging.getLogger(__name__)


def _fmt(value) -> str:
    return "-" if value is None else f"{value:.2f}"


def print_report(result: BatchResult) -> None:
    """Print aggregate counts and one line per checked post."""
    summary = result.summary()
    print(
        f"Checked: {summary['checked_posts']}, Updated: {summary['updated_posts']}, "
        f"Skipped: {summary['skipped_posts']}, Closed (not checked): "
        f"{summary['closed_posts_skipped']}"
    )
    if result.cancelled:
        print("Batch was cancelled; results are partial")
    if result.remaining_checks is not None:
        print(f"Price checks left today: {result.remaining_checks}")

    for r in result.results:
        change = f" [{', '.join(r.changed_flags)}]" if r.changed_flags else ""
        print(
            f"{r.symbol}: {r.status_label}{change} "
            f"price {_fmt(r.previous_price)} -> {_fmt(r.current_price)}, "
            f"target {_fmt(r.target_price)}, stop {_fmt(r.stop_loss_price)}"
        )

    if result.errors:
        symbols = ", ".join(r.symbol for r in result.errors)
        print(f"Could not update: {symbols}")


async def run(app: CallWatchApp, owner_id: str) -> BatchResult:
    """Run one batch, cancelling cooperatively on Ctrl+C."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, app.cancel_batch, owner_id)
    except NotImplementedError:
        pass
    try:
        return await app.run_batch(owner_id)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass


def main():
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="CallWatch post price checker")
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config file"
    )
    parser.add_argument("--owner", required=True, help="Owner whose posts to check")
    parser.add_argument(
        "--notify", action="store_true", help="Broadcast changed posts to Telegram"
    )
    parser.add_argument("--comment", default="", help="Comment for the broadcast")
    parser.add_argument(
        "--scope",
        default="followers",
        choices=["followers", "all_subscribers", "manual"],
        help="Broadcast recipients",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--dry-run", action="store_true", help="Run without sending notifications"
    )

    args = parser.parse_args()

    config = load_config(args.config)

    # Setup logging
    log_level = logging.DEBUG if args.debug else getattr(
        logging, config.advanced.log_level.upper(), logging.INFO
    )
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    db = Database(config.database.path)
    db.initialize()

    app = CallWatchApp.from_config(config, db)

    try:
        result = asyncio.run(run(app, args.owner))
    except QuotaExceeded:
        print("Daily price check limit reached. Try again tomorrow.")
        db.close()
        sys.exit(1)
    except AlreadyRunning:
        print("A price check is already running for this owner. Try again later.")
        db.close()
        sys.exit(1)

    print_report(result)

    if args.notify:
        selection = app.select_for_notification(result)
        print(selection.title)
        if args.dry_run:
            logger.info("Dry run mode - no notifications will be sent")
        else:
            try:
                payload = selection.to_payload(
                    comment=args.comment, recipient_scope=args.scope
                )
            except EmptySelection:
                print("No changed posts to broadcast")
            else:
                outcome = app.dispatch(payload)
                print("Broadcast sent" if outcome.success else f"Broadcast failed: {outcome.error}")

    db.close()


if __name__ == "__main__":
    main()
