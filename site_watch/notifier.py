from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

import httpx

from site_watch.probe import safe_url
from site_watch.telegram import TelegramConfig, redact_telegram_response, send_telegram_message


LOGGER = logging.getLogger("site-watch.notifier")


class EventKind(str, Enum):
    DOWN = "down"
    RECOVERED = "recovered"


@dataclass(frozen=True)
class NotificationEvent:
    kind: EventKind
    owner_id: int
    url: str
    endpoint_id: int | None = None
    error: str | None = None


def build_event_message(event: NotificationEvent) -> str:
    if event.kind is EventKind.RECOVERED:
        return f"✅ {event.url} is back online"
    lines = [f"⚠️ {event.url} is unreachable!"]
    if event.error:
        lines.append(f"Reason: {event.error[:300]}")
    return "\n".join(lines)


class Notifier:
    """
    Fire-and-forget delivery of transition events.

    dispatch() returns immediately; delivery runs as a background task whose
    failures are logged and dropped. Subclasses implement deliver().
    """

    def __init__(self) -> None:
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def deliver(self, event: NotificationEvent) -> None:
        raise NotImplementedError

    def dispatch(self, event: NotificationEvent) -> None:
        task = asyncio.create_task(self._deliver_logged(event), name=f"notify-{event.kind.value}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver_logged(self, event: NotificationEvent) -> None:
        try:
            await self.deliver(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception(
                "Notification delivery failed kind=%s owner_id=%s url=%s",
                event.kind.value,
                event.owner_id,
                safe_url(event.url),
            )

    async def aclose(self, *, timeout: float = 10.0) -> None:
        """Wait for in-flight deliveries; cancel whatever is still pending after timeout."""
        if not self._pending:
            return
        pending = list(self._pending)
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            LOGGER.warning("Dropped undelivered notifications count=%s", len(still_pending))
            await asyncio.gather(*still_pending, return_exceptions=True)


class TelegramNotifier(Notifier):
    def __init__(
        self,
        client: httpx.AsyncClient,
        config: TelegramConfig,
        *,
        admin_chat_id: str | None = None,
    ) -> None:
        super().__init__()
        self._client = client
        self._config = config
        self._admin_chat_id = (admin_chat_id or "").strip() or None

    def target_chat(self, event: NotificationEvent) -> int | str:
        # Single-admin delivery when configured, otherwise the endpoint owner.
        return self._admin_chat_id or event.owner_id

    async def deliver(self, event: NotificationEvent) -> None:
        chat_id = self.target_chat(event)
        ok, resp = await send_telegram_message(self._client, self._config, chat_id, build_event_message(event))
        if ok:
            LOGGER.info("Alert sent kind=%s chat_id=%s url=%s", event.kind.value, chat_id, safe_url(event.url))
        else:
            LOGGER.warning(
                "Alert not delivered kind=%s chat_id=%s telegram=%s",
                event.kind.value,
                chat_id,
                redact_telegram_response(resp),
            )


class LogNotifier(Notifier):
    """Used when no bot token is configured: events are only logged."""

    async def deliver(self, event: NotificationEvent) -> None:
        LOGGER.warning(
            "Alert (no telegram token) kind=%s owner_id=%s url=%s",
            event.kind.value,
            event.owner_id,
            safe_url(event.url),
        )
