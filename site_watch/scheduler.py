from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from site_watch import db
from site_watch.context import WatchContext
from site_watch.db import Endpoint
from site_watch.errors import PersistenceError
from site_watch.probe import ProbeResult, probe, safe_url
from site_watch.transitions import Transition, apply_probe_result


LOGGER = logging.getLogger("site-watch.scheduler")


@dataclass(frozen=True)
class EndpointOutcome:
    endpoint_id: int
    url: str
    result: ProbeResult | None
    transition: Transition | None
    error: str | None = None


@dataclass(frozen=True)
class TickReport:
    tick: int
    started_at_ts: float
    elapsed_seconds: float
    outcomes: list[EndpointOutcome] = field(default_factory=list)
    snapshot_failed: bool = False

    @property
    def transitions(self) -> int:
        return sum(1 for o in self.outcomes if o.transition is not None and o.transition.changed)

    @property
    def alerts(self) -> int:
        return sum(1 for o in self.outcomes if o.transition is not None and o.transition.notify)

    @property
    def errors(self) -> int:
        return sum(1 for o in self.outcomes if o.error is not None)


class PollScheduler:
    """
    Fixed-interval poller: Idle -> Polling -> Idle.

    Every tick snapshots the registry and probes each endpoint in its own task;
    each result goes to the transition engine as soon as that probe finishes.
    With allow_overlap (default) a slow tick does not delay the next one;
    otherwise a tick that comes due while another is running is skipped.
    """

    def __init__(self, ctx: WatchContext) -> None:
        self._ctx = ctx
        self._tick_seq = 0
        self._inflight: set[asyncio.Task] = set()

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def _check_endpoint(self, endpoint: Endpoint) -> EndpointOutcome:
        settings = self._ctx.settings
        result = await probe(
            self._ctx.http_client,
            endpoint.url,
            timeout_seconds=settings.probe_timeout_seconds,
            method=settings.probe_method,
        )
        try:
            transition = await apply_probe_result(self._ctx, endpoint, result)
        except PersistenceError as exc:
            LOGGER.error(
                "Status write failed endpoint_id=%s url=%s error=%s",
                endpoint.id,
                safe_url(endpoint.url),
                exc,
            )
            return EndpointOutcome(endpoint.id, endpoint.url, result, None, error=f"persistence: {exc}")
        return EndpointOutcome(endpoint.id, endpoint.url, result, transition)

    async def _check_endpoint_isolated(self, endpoint: Endpoint) -> EndpointOutcome:
        try:
            return await self._check_endpoint(endpoint)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # One endpoint's pipeline must never take down the rest of the tick.
            LOGGER.exception("Endpoint check crashed endpoint_id=%s url=%s", endpoint.id, safe_url(endpoint.url))
            return EndpointOutcome(endpoint.id, endpoint.url, None, None, error=f"{type(exc).__name__}: {exc}")

    def _next_tick(self) -> int:
        self._tick_seq += 1
        return self._tick_seq

    async def run_tick(self, tick: int | None = None) -> TickReport:
        if tick is None:
            tick = self._next_tick()
        started_ts = time.time()
        started = time.monotonic()

        try:
            endpoints = await asyncio.to_thread(db.list_all_endpoints, self._ctx.settings)
        except PersistenceError:
            LOGGER.exception("Registry snapshot failed tick=%s", tick)
            return TickReport(tick, started_ts, time.monotonic() - started, snapshot_failed=True)

        if not endpoints:
            LOGGER.debug("Tick has nothing to probe tick=%s", tick)
            return TickReport(tick, started_ts, time.monotonic() - started)

        tasks = [
            asyncio.create_task(self._check_endpoint_isolated(ep), name=f"probe-{ep.id}")
            for ep in endpoints
        ]
        outcomes = list(await asyncio.gather(*tasks))

        report = TickReport(tick, started_ts, time.monotonic() - started, outcomes)
        LOGGER.info(
            "Tick complete tick=%s endpoints=%s transitions=%s alerts=%s errors=%s elapsed_seconds=%s",
            tick,
            len(outcomes),
            report.transitions,
            report.alerts,
            report.errors,
            round(report.elapsed_seconds, 3),
        )
        return report

    async def _run_tick_logged(self, tick: int) -> None:
        try:
            await self.run_tick(tick)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Tick crashed tick=%s", tick)

    def _start_tick(self) -> bool:
        if self._inflight and not self._ctx.settings.allow_overlap:
            LOGGER.warning("Skipping tick; previous tick still running inflight=%s", len(self._inflight))
            return False
        tick = self._next_tick()
        task = asyncio.create_task(self._run_tick_logged(tick), name=f"tick-{tick}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return True

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        interval = float(self._ctx.settings.interval_seconds)
        LOGGER.info(
            "Scheduler started interval_seconds=%s timeout_seconds=%s allow_overlap=%s",
            interval,
            self._ctx.settings.probe_timeout_seconds,
            self._ctx.settings.allow_overlap,
        )
        next_due = time.monotonic()
        try:
            while not stop_event.is_set():
                self._start_tick()

                next_due += interval
                now = time.monotonic()
                if next_due <= now:
                    # Event loop was stalled past one or more slots; do not fire a burst of catch-up ticks.
                    next_due = now + interval
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=next_due - now)
                except asyncio.TimeoutError:
                    pass
        finally:
            if self._inflight:
                LOGGER.info("Waiting for in-flight ticks count=%s", len(self._inflight))
                await asyncio.gather(*list(self._inflight), return_exceptions=True)
            LOGGER.info("Scheduler stopped")
