from __future__ import annotations

import asyncio
import time

import httpx
import pytest

from site_watch.probe import ProbeOutcome, build_probe_client, probe, safe_url


@pytest.mark.asyncio
async def test_probe_ok_is_reachable(site_base_url: str) -> None:
    async with httpx.AsyncClient() as client:
        result = await probe(client, f"{site_base_url}/ok", timeout_seconds=5.0)
    assert result.outcome is ProbeOutcome.REACHABLE
    assert result.reachable is True
    assert result.status_code == 200
    assert result.error is None
    assert isinstance(result.elapsed_ms, float)
    assert result.elapsed_ms >= 0


@pytest.mark.asyncio
async def test_probe_follows_redirects(site_base_url: str) -> None:
    async with httpx.AsyncClient() as client:
        result = await probe(client, f"{site_base_url}/redirect", timeout_seconds=5.0)
    assert result.outcome is ProbeOutcome.REACHABLE
    assert result.status_code == 200


@pytest.mark.asyncio
@pytest.mark.parametrize(("path", "status"), [("/bad_gateway", 502), ("/server_error", 500), ("/missing", 404)])
async def test_probe_error_status_is_unreachable(site_base_url: str, path: str, status: int) -> None:
    async with httpx.AsyncClient() as client:
        result = await probe(client, f"{site_base_url}{path}", timeout_seconds=5.0)
    assert result.outcome is ProbeOutcome.UNREACHABLE
    assert result.status_code == status
    assert result.error == f"http_status: {status}"


@pytest.mark.asyncio
async def test_probe_head_method(site_base_url: str) -> None:
    async with httpx.AsyncClient() as client:
        result = await probe(client, f"{site_base_url}/ok", timeout_seconds=5.0, method="HEAD")
    assert result.outcome is ProbeOutcome.REACHABLE


@pytest.mark.asyncio
async def test_probe_connection_refused_is_unreachable(closed_port_url: str) -> None:
    async with httpx.AsyncClient() as client:
        result = await probe(client, closed_port_url, timeout_seconds=5.0)
    assert result.outcome is ProbeOutcome.UNREACHABLE
    assert result.status_code is None
    assert str(result.error).startswith("http_error: ")


@pytest.mark.asyncio
async def test_probe_unresolvable_host_is_unreachable() -> None:
    async with httpx.AsyncClient() as client:
        result = await probe(client, "http://does-not-exist.invalid/", timeout_seconds=5.0)
    assert result.outcome is ProbeOutcome.UNREACHABLE


@pytest.mark.asyncio
async def test_probe_timeout_bound_on_silent_server(silent_url: str) -> None:
    started = time.monotonic()
    async with httpx.AsyncClient() as client:
        result = await probe(client, silent_url, timeout_seconds=0.5)
    elapsed = time.monotonic() - started

    assert result.outcome is ProbeOutcome.UNREACHABLE
    assert elapsed < 2.0


@pytest.mark.asyncio
async def test_probe_timeout_bound_on_slow_response(site_base_url: str) -> None:
    started = time.monotonic()
    async with build_probe_client() as client:
        result = await probe(client, f"{site_base_url}/slow", timeout_seconds=0.5)
    elapsed = time.monotonic() - started

    assert result.outcome is ProbeOutcome.UNREACHABLE
    assert elapsed < 2.0


@pytest.mark.asyncio
async def test_probe_hard_timeout_when_transport_hangs() -> None:
    async def _hang(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(30)
        return httpx.Response(200)

    # MockTransport ignores httpx timeouts, so only the outer bound can stop this.
    async with httpx.AsyncClient(transport=httpx.MockTransport(_hang)) as client:
        started = time.monotonic()
        result = await probe(client, "https://hangs.example.com/", timeout_seconds=0.3)
        elapsed = time.monotonic() - started

    assert result.outcome is ProbeOutcome.UNREACHABLE
    assert str(result.error).startswith("timeout:")
    assert elapsed < 2.0


def test_safe_url_drops_query_and_fragment() -> None:
    assert safe_url("https://example.com/health?token=secret#x") == "https://example.com/health"
    assert safe_url("  ") == ""
