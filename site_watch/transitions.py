from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from site_watch import db
from site_watch.context import WatchContext
from site_watch.db import Endpoint, EndpointStatus
from site_watch.notifier import EventKind, NotificationEvent
from site_watch.probe import ProbeOutcome, ProbeResult, safe_url


LOGGER = logging.getLogger("site-watch.transitions")


@dataclass(frozen=True)
class Transition:
    previous_status: EndpointStatus
    new_status: EndpointStatus
    notify: bool
    kind: EventKind | None = None

    @property
    def changed(self) -> bool:
        return self.previous_status != self.new_status


def decide_transition(
    current_status: EndpointStatus,
    outcome: ProbeOutcome,
    *,
    notify_on_recovery: bool = False,
) -> Transition:
    """
    Pure status decision for one probe result.

    Only a move into offline alerts by default; recovery is persisted silently
    unless notify_on_recovery is set, and then only for offline -> online.
    """
    current_status = EndpointStatus(current_status)

    if outcome is ProbeOutcome.REACHABLE:
        if current_status is EndpointStatus.ONLINE:
            return Transition(current_status, current_status, notify=False)
        recovered = current_status is EndpointStatus.OFFLINE and notify_on_recovery
        return Transition(
            current_status,
            EndpointStatus.ONLINE,
            notify=recovered,
            kind=EventKind.RECOVERED if recovered else None,
        )

    if current_status is EndpointStatus.OFFLINE:
        return Transition(current_status, current_status, notify=False)
    return Transition(current_status, EndpointStatus.OFFLINE, notify=True, kind=EventKind.DOWN)


async def apply_probe_result(ctx: WatchContext, endpoint: Endpoint, result: ProbeResult) -> Transition:
    """
    Persist the decision for one endpoint and hand any alert to the notifier.

    endpoint.status is the value read when the probe was dispatched. Raises
    PersistenceError if the write fails; no alert is sent in that case so the
    next tick can retry the transition.
    """
    transition = decide_transition(
        endpoint.status,
        result.outcome,
        notify_on_recovery=ctx.settings.notify_on_recovery,
    )
    if not transition.changed:
        return transition

    previous = await asyncio.to_thread(
        db.set_status,
        ctx.settings,
        endpoint_id=endpoint.id,
        status=transition.new_status,
        expected_url=endpoint.url,
    )
    if previous is None:
        # Row deleted or renamed while the probe ran; the result no longer applies.
        LOGGER.info("Endpoint removed or renamed during probe endpoint_id=%s url=%s", endpoint.id, safe_url(endpoint.url))
        return Transition(transition.previous_status, transition.previous_status, notify=False)
    if previous == transition.new_status:
        # An overlapping tick already applied this transition and sent its alert.
        LOGGER.debug("Transition already applied endpoint_id=%s status=%s", endpoint.id, previous.value)
        return Transition(previous, previous, notify=False)

    LOGGER.info(
        "Status transition endpoint_id=%s url=%s from=%s to=%s notify=%s",
        endpoint.id,
        safe_url(endpoint.url),
        transition.previous_status.value,
        transition.new_status.value,
        transition.notify,
    )

    if transition.notify and transition.kind is not None:
        ctx.notifier.dispatch(
            NotificationEvent(
                kind=transition.kind,
                owner_id=endpoint.owner_id,
                url=endpoint.url,
                endpoint_id=endpoint.id,
                error=result.error,
            )
        )
    return transition
