from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from site_watch.commands import handle_message
from site_watch.context import WatchContext
from site_watch.db import Identity
from site_watch.telegram import get_updates, redact_telegram_response, send_telegram_message_chunked


LOGGER = logging.getLogger("site-watch.bot")

ERROR_BACKOFF_SECONDS = 5.0


def identity_from_message(message: dict[str, Any]) -> Identity | None:
    sender = message.get("from")
    if not isinstance(sender, dict) or sender.get("id") is None:
        return None
    return Identity(
        id=int(sender["id"]),
        username=str(sender.get("username") or ""),
        first_name=str(sender.get("first_name") or ""),
    )


async def process_update(ctx: WatchContext, update: dict[str, Any]) -> str | None:
    """Handle one Telegram update; returns the reply that was sent (if any)."""
    message = update.get("message")
    if not isinstance(message, dict):
        return None
    text = message.get("text")
    identity = identity_from_message(message)
    chat = message.get("chat") or {}
    chat_id = chat.get("id") if isinstance(chat, dict) else None
    if not isinstance(text, str) or identity is None or chat_id is None:
        return None

    reply = await asyncio.to_thread(handle_message, ctx.settings, identity, text)
    if ctx.telegram is not None:
        ok, responses = await send_telegram_message_chunked(ctx.http_client, ctx.telegram, chat_id, reply)
        if not ok:
            LOGGER.warning(
                "Reply not delivered chat_id=%s telegram=%s",
                chat_id,
                [redact_telegram_response(r) for r in responses],
            )
    return reply


async def run_bot(ctx: WatchContext, stop_event: asyncio.Event, *, poll_timeout: int = 30) -> None:
    """Long-poll Telegram for chat commands until stop_event is set."""
    if ctx.telegram is None:
        raise RuntimeError("Missing TELEGRAM_BOT_TOKEN; chat interface disabled")

    offset: int | None = None
    LOGGER.info("Bot listening for updates")
    while not stop_event.is_set():
        poll = asyncio.create_task(get_updates(ctx.http_client, ctx.telegram, offset=offset, timeout=poll_timeout))
        stopper = asyncio.create_task(stop_event.wait())
        try:
            await asyncio.wait({poll, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
        if not poll.done():
            poll.cancel()
            await asyncio.gather(poll, return_exceptions=True)
            break

        try:
            updates = poll.result()
        except (httpx.HTTPError, ValueError) as e:
            LOGGER.warning("getUpdates failed error=%s", ctx.telegram.redact(f"{type(e).__name__}: {e}"))
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=ERROR_BACKOFF_SECONDS)
            except asyncio.TimeoutError:
                pass
            continue

        for update in updates:
            update_id = update.get("update_id")
            if isinstance(update_id, int) and (offset is None or update_id >= offset):
                offset = update_id + 1
            try:
                await process_update(ctx, update)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Update handling crashed update_id=%s", update_id)
    LOGGER.info("Bot stopped")
