from __future__ import annotations

import logging
from dataclasses import dataclass

from site_watch import db
from site_watch.db import EndpointStatus, Identity
from site_watch.errors import DuplicateError, PersistenceError, ValidationError
from site_watch.probe import safe_url
from site_watch.settings import WatchSettings


LOGGER = logging.getLogger("site-watch.commands")

STATUS_LABELS = {
    EndpointStatus.ONLINE: "🟢 online",
    EndpointStatus.OFFLINE: "🔴 offline",
    EndpointStatus.UNKNOWN: "⚪ not checked yet",
}


@dataclass(frozen=True)
class Command:
    name: str  # "" for plain text
    args: list[str]


def parse_command(text: str) -> Command:
    s = (text or "").strip()
    if not s.startswith("/"):
        return Command(name="", args=[s] if s else [])
    head, *args = s.split()
    # Group chats address commands as /list@my_bot.
    name = head[1:].split("@", 1)[0].lower()
    return Command(name=name, args=args)


def _format_interval(seconds: float) -> str:
    seconds = int(round(float(seconds)))
    if seconds % 60 == 0 and seconds >= 60:
        minutes = seconds // 60
        return "minute" if minutes == 1 else f"{minutes} minutes"
    return f"{seconds} seconds"


def help_text(settings: WatchSettings) -> str:
    return "\n".join(
        [
            "Send me a link and I will watch whether it is reachable.",
            f"Every site is checked every {_format_interval(settings.interval_seconds)}.",
            "",
            "/list - your sites and their status",
            "/delete <url> - stop watching a site",
            "/update <old_url> <new_url> - change a watched URL",
        ]
    )


def format_endpoint_list(endpoints: list[db.Endpoint]) -> str:
    if not endpoints:
        return "No sites found."
    return "\n".join(f"{ep.url} — {STATUS_LABELS[ep.status]}" for ep in endpoints)


def cmd_register(settings: WatchSettings, identity: Identity, url: str) -> str:
    try:
        db.validate_url(url)
    except ValidationError:
        return "Please send a valid URL starting with http:// or https://"
    try:
        endpoint = db.add_endpoint(settings, owner_id=identity.id, url=url)
    except DuplicateError:
        return "This site is already on your list."
    LOGGER.info("Endpoint registered owner_id=%s endpoint_id=%s url=%s", identity.id, endpoint.id, safe_url(endpoint.url))
    return f"Added {endpoint.url}! I will check it every {_format_interval(settings.interval_seconds)}."


def cmd_list(settings: WatchSettings, identity: Identity) -> str:
    return format_endpoint_list(db.list_endpoints_for(settings, owner_id=identity.id))


def cmd_delete(settings: WatchSettings, identity: Identity, args: list[str]) -> str:
    if len(args) != 1:
        return "Usage: /delete <url>"
    url = args[0].strip()
    if not db.remove_endpoint(settings, owner_id=identity.id, url=url):
        return "Site not found."
    LOGGER.info("Endpoint deleted owner_id=%s url=%s", identity.id, safe_url(url))
    return f"🗑️ Site {url} removed."


def cmd_update(settings: WatchSettings, identity: Identity, args: list[str]) -> str:
    if len(args) != 2:
        return "Usage: /update <old_url> <new_url>"
    old_url, new_url = args
    try:
        db.validate_url(new_url)
    except ValidationError:
        return "The new URL must start with http:// or https://"
    try:
        renamed = db.rename_endpoint(settings, owner_id=identity.id, old_url=old_url, new_url=new_url)
    except DuplicateError:
        return f"{new_url} is already on your list."
    if not renamed:
        return "Old URL not found."
    LOGGER.info("Endpoint renamed owner_id=%s old=%s new=%s", identity.id, safe_url(old_url), safe_url(new_url))
    return f"✏️ Site updated: {old_url} → {new_url}"


def handle_message(settings: WatchSettings, identity: Identity, text: str) -> str:
    """
    Execute one chat message for identity and return the reply text.

    Registry failures are reported to the user instead of raised.
    """
    command = parse_command(text)
    try:
        known = db.get_identity(settings, identity_id=identity.id) if command.name == "start" else None
        db.upsert_identity(settings, identity)

        if command.name == "start":
            greeting = f"Welcome back, {identity.display_name}!" if known else f"Hi {identity.display_name}!"
            return f"{greeting}\n\n{help_text(settings)}"
        if command.name == "help":
            return help_text(settings)
        if command.name == "list":
            return cmd_list(settings, identity)
        if command.name == "delete":
            return cmd_delete(settings, identity, command.args)
        if command.name == "update":
            return cmd_update(settings, identity, command.args)
        if command.name:
            return f"Unknown command: /{command.name}\n\n{help_text(settings)}"
        if len(command.args) != 1:
            return "Please send a valid URL starting with http:// or https://"
        return cmd_register(settings, identity, command.args[0])
    except PersistenceError:
        LOGGER.exception("Registry error handling command=%s owner_id=%s", command.name or "<text>", identity.id)
        return "Something went wrong while talking to the database. Please try again later."
