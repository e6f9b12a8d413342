import argparse
import asyncio
import logging
import sys

from ttpwatch.config import Settings, load_settings
from ttpwatch.consumers import EmailConsumer, LogConsumer
from ttpwatch.domain import SetupError
from ttpwatch.email_notifier import SendGridSender, load_email_config
from ttpwatch.rest import TtpClient
from ttpwatch.supervisor import run_until_first_exit, supervise
from ttpwatch.watcher import Watcher, load_locations_from_file

logger = logging.getLogger("ttpwatch")


def _setup_logging(log_path: str | None, verbose: bool = False) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_path:
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        handlers=handlers,
        force=True,
    )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Trusted Traveler Program slot watcher")
    parser.add_argument(
        "-l", "--location", help="Location to monitor, any substring of the location's name"
    )
    parser.add_argument("-e", "--email", help="Send an email alert to this address")
    parser.add_argument("--poll-period", type=int, help="Polling period in seconds (default 30)")
    parser.add_argument("--sendgrid-config-path", help="Path to the SendGrid secret (default sendgrid.secret)")
    parser.add_argument(
        "--location-cache-path",
        help="JSON file with the locations returned by the TTP API; skips the live fetch",
    )
    parser.add_argument("--log-path", help="Path to the log file (default debug.log)")
    parser.add_argument("--restart-attempts", type=int, help="Runs a crashing task gets (default 3)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


async def run(settings: Settings) -> int:
    # Everything that can fail fatally happens before the first poll.
    email_config = load_email_config(settings.sendgrid_config_path) if settings.alert_email else None

    async with TtpClient() as client:
        if settings.location_cache_path:
            locations = load_locations_from_file(settings.location_cache_path)
            watcher = Watcher(
                client,
                locations=locations,
                target=settings.location,
                poll_period_seconds=settings.poll_period_seconds,
            )
        else:
            watcher = await Watcher.from_api(
                client,
                target=settings.location,
                poll_period_seconds=settings.poll_period_seconds,
            )

        jobs = {"logging": LogConsumer(watcher.subscribe()).run}

        sender: SendGridSender | None = None
        if email_config is not None and settings.alert_email:
            sender = SendGridSender(email_config)
            jobs["email"] = EmailConsumer(watcher.subscribe(), sender, settings.alert_email).run

        jobs["watcher"] = watcher.watch

        try:
            tasks = [
                asyncio.create_task(supervise(name, job, attempts=settings.restart_attempts), name=name)
                for name, job in jobs.items()
            ]
            finished = await run_until_first_exit(tasks)
        finally:
            if sender is not None:
                await sender.aclose()

    if finished.cancelled() or finished.exception() is not None:
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    try:
        settings = load_settings(
            {
                "location": args.location,
                "alert_email": args.email,
                "poll_period_seconds": args.poll_period,
                "sendgrid_config_path": args.sendgrid_config_path,
                "location_cache_path": args.location_cache_path,
                "log_path": args.log_path,
                "restart_attempts": args.restart_attempts,
            }
        )
    except SetupError as e:
        _setup_logging(None, args.verbose)
        logger.error("Invalid configuration: %s", e)
        return 1

    _setup_logging(settings.log_path, args.verbose)
    logger.info(
        "ttpwatch started. location=%r interval=%ss email=%s",
        settings.location,
        settings.poll_period_seconds,
        "on" if settings.alert_email else "off",
    )

    try:
        return asyncio.run(run(settings))
    except SetupError as e:
        logger.error("Setup failed: %s", e)
        return 1
    except Exception as e:
        logger.error("ttpwatch crashed (%s: %s)", type(e).__name__, e)
        raise
    finally:
        logger.info("ttpwatch stopped.")
