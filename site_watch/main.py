from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from pathlib import Path

from site_watch import db
from site_watch.bot import run_bot
from site_watch.context import build_context
from site_watch.scheduler import PollScheduler
from site_watch.settings import WatchSettings, load_settings


LOGGER = logging.getLogger("site-watch")


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops; Ctrl+C still raises KeyboardInterrupt there.
            return


async def run(settings: WatchSettings, *, once: bool, with_bot: bool) -> int:
    await asyncio.to_thread(db.ensure_schema, settings)
    ctx = build_context(settings)
    scheduler = PollScheduler(ctx)

    try:
        if once:
            report = await scheduler.run_tick()
            return 1 if report.snapshot_failed else 0

        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)

        tasks = [asyncio.create_task(scheduler.run_forever(stop_event), name="scheduler")]
        if with_bot and ctx.telegram is not None:
            tasks.append(asyncio.create_task(run_bot(ctx, stop_event), name="bot"))
        elif with_bot:
            LOGGER.warning("Missing TELEGRAM_BOT_TOKEN; chat interface disabled, alerts will only be logged")

        await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        stop_event.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        exit_code = 0
        for task, res in zip(tasks, results):
            if isinstance(res, Exception):
                LOGGER.error("Task failed name=%s error=%r", task.get_name(), res)
                exit_code = 1
        return exit_code
    finally:
        await ctx.notifier.aclose()
        await ctx.http_client.aclose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Website uptime watcher with a Telegram chat interface")
    parser.add_argument("--config", default=None, help="Path to YAML config (optional; env vars are used otherwise)")
    parser.add_argument("--once", action="store_true", help="Run one probe tick and exit")
    parser.add_argument("--no-bot", action="store_true", help="Only poll; do not listen for chat commands")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (INFO, WARNING, ...)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    # Avoid leaking secrets (Telegram token is embedded in the Telegram API URL).
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    settings = load_settings(Path(args.config) if args.config else None)
    return asyncio.run(run(settings, once=bool(args.once), with_bot=not args.no_bot))


if __name__ == "__main__":
    raise SystemExit(main())
