from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx


TELEGRAM_API_BASE = "https://api.telegram.org"
TELEGRAM_MAX_MESSAGE_LEN = 3900


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    api_base: str = TELEGRAM_API_BASE

    def method_url(self, method: str) -> str:
        return f"{self.api_base.rstrip('/')}/bot{self.bot_token}/{method}"

    def redact(self, text: str) -> str:
        if self.bot_token:
            return text.replace(self.bot_token, "<redacted>")
        return text


def split_telegram_message(text: str, *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    s = (text or "").strip()
    if not s:
        return [""]

    max_len = max(1, int(max_len))
    parts: list[str] = []
    while s:
        if len(s) <= max_len:
            parts.append(s)
            break
        cut = s.rfind("\n", 0, max_len + 1)
        if cut < max_len * 0.6:
            cut = max_len
        chunk = s[:cut].rstrip()
        parts.append(chunk)
        s = s[cut:].lstrip()
    return parts


async def send_telegram_message(
    client: httpx.AsyncClient, config: TelegramConfig, chat_id: int | str, text: str
) -> tuple[bool, dict]:
    payload = {"chat_id": chat_id, "text": text}
    try:
        resp = await client.post(config.method_url("sendMessage"), json=payload, timeout=15.0)
        data = resp.json()
        return bool(data.get("ok")), data
    except (httpx.HTTPError, ValueError) as e:
        return False, {"ok": False, "error": config.redact(f"{type(e).__name__}: {e}")}


async def send_telegram_message_chunked(
    client: httpx.AsyncClient,
    config: TelegramConfig,
    chat_id: int | str,
    text: str,
    *,
    max_len: int = TELEGRAM_MAX_MESSAGE_LEN,
) -> tuple[bool, list[dict]]:
    parts = split_telegram_message(text, max_len=max_len)
    ok_all = True
    responses: list[dict] = []
    for part in parts:
        ok, resp = await send_telegram_message(client, config, chat_id, part)
        ok_all = ok_all and ok
        responses.append(resp)
    return ok_all, responses


async def get_updates(
    client: httpx.AsyncClient,
    config: TelegramConfig,
    *,
    offset: int | None = None,
    timeout: int = 30,
) -> list[dict[str, Any]]:
    """
    Long-poll for new updates. Raises httpx.HTTPError (transport) or ValueError
    (non-JSON body) so the caller can back off.
    """
    params: dict[str, Any] = {"timeout": int(timeout), "allowed_updates": json.dumps(["message"])}
    if offset is not None:
        params["offset"] = int(offset)
    resp = await client.get(config.method_url("getUpdates"), params=params, timeout=float(timeout) + 5.0)
    data = resp.json()
    if not isinstance(data, dict) or not data.get("ok"):
        return []
    result = data.get("result")
    return result if isinstance(result, list) else []


def redact_telegram_response(data: dict) -> str:
    safe: dict[str, Any] = {"ok": data.get("ok")}
    if isinstance(data.get("result"), dict):
        safe["result"] = {"message_id": data["result"].get("message_id")}
    if data.get("description"):
        safe["description"] = data.get("description")
    if data.get("error"):
        safe["error"] = data.get("error")
    return json.dumps(safe, ensure_ascii=False)
