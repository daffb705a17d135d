from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlsplit, urlunsplit

import httpx


class ProbeOutcome(str, Enum):
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class ProbeResult:
    url: str
    outcome: ProbeOutcome
    status_code: int | None = None
    error: str | None = None
    elapsed_ms: float | None = None

    @property
    def reachable(self) -> bool:
        return self.outcome is ProbeOutcome.REACHABLE


def safe_url(url: str) -> str:
    """
    Drop querystring/fragment so tokens in monitored URLs stay out of logs and messages.
    """
    s = (url or "").strip()
    if not s:
        return s
    try:
        parts = urlsplit(s)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    except ValueError:
        return s[:500]


def build_probe_client(*, user_agent: str = "site-watch/1.0") -> httpx.AsyncClient:
    # No pool cap: a slow endpoint must not hold up connections for the others.
    limits = httpx.Limits(max_connections=None, max_keepalive_connections=20)
    return httpx.AsyncClient(headers={"User-Agent": user_agent}, limits=limits)


async def _request(client: httpx.AsyncClient, url: str, *, method: str, timeout_seconds: float) -> httpx.Response:
    return await client.request(method, url, follow_redirects=True, timeout=timeout_seconds)


async def probe(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout_seconds: float,
    method: str = "GET",
) -> ProbeResult:
    """
    One reachability check. Never raises for network-level problems: DNS failure,
    refused connection, TLS errors, timeouts and non-2xx answers all come back
    as UNREACHABLE.
    """
    started = time.perf_counter()

    def _elapsed() -> float:
        return round((time.perf_counter() - started) * 1000.0, 3)

    try:
        # httpx applies the timeout per phase; wait_for bounds the whole request.
        resp = await asyncio.wait_for(
            _request(client, url, method=method, timeout_seconds=timeout_seconds),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        return ProbeResult(
            url=url,
            outcome=ProbeOutcome.UNREACHABLE,
            error=f"timeout: no response within {timeout_seconds}s",
            elapsed_ms=_elapsed(),
        )
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        return ProbeResult(
            url=url,
            outcome=ProbeOutcome.UNREACHABLE,
            error=f"http_error: {type(e).__name__}: {e}"[:500],
            elapsed_ms=_elapsed(),
        )

    ok = 200 <= resp.status_code < 300
    return ProbeResult(
        url=url,
        outcome=ProbeOutcome.REACHABLE if ok else ProbeOutcome.UNREACHABLE,
        status_code=resp.status_code,
        error=None if ok else f"http_status: {resp.status_code}",
        elapsed_ms=_elapsed(),
    )
