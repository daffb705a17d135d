from __future__ import annotations

from dataclasses import dataclass

import httpx

from site_watch.notifier import LogNotifier, Notifier, TelegramNotifier
from site_watch.probe import build_probe_client
from site_watch.settings import WatchSettings
from site_watch.telegram import TelegramConfig


@dataclass(frozen=True)
class WatchContext:
    """Everything the scheduler, engine and bot need; built once at startup."""

    settings: WatchSettings
    http_client: httpx.AsyncClient
    notifier: Notifier
    telegram: TelegramConfig | None = None


def build_context(settings: WatchSettings, *, http_client: httpx.AsyncClient | None = None) -> WatchContext:
    client = http_client if http_client is not None else build_probe_client()
    telegram_cfg: TelegramConfig | None = None
    notifier: Notifier
    if settings.telegram_bot_token:
        telegram_cfg = TelegramConfig(bot_token=settings.telegram_bot_token)
        notifier = TelegramNotifier(client, telegram_cfg, admin_chat_id=settings.admin_chat_id)
    else:
        notifier = LogNotifier()
    return WatchContext(settings=settings, http_client=client, notifier=notifier, telegram=telegram_cfg)
