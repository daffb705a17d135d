from __future__ import annotations

import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import urlsplit

import pytest

from site_watch import db
from site_watch.notifier import NotificationEvent, Notifier
from site_watch.settings import WatchSettings


class RecordingNotifier(Notifier):
    def __init__(self, *, fail: bool = False) -> None:
        super().__init__()
        self.events: list[NotificationEvent] = []
        self.fail = fail

    async def deliver(self, event: NotificationEvent) -> None:
        self.events.append(event)
        if self.fail:
            raise RuntimeError("telegram is down")


def _make_settings(db_path: Path, **overrides) -> WatchSettings:
    values = {
        "db_path": str(db_path),
        "telegram_bot_token": "",
        "admin_chat_id": "",
        "interval_seconds": 300.0,
        "probe_timeout_seconds": 2.0,
        "probe_method": "GET",
        "allow_overlap": True,
        "notify_on_recovery": False,
    }
    values.update(overrides)
    return WatchSettings(**values)


@pytest.fixture()
def settings(tmp_path: Path) -> WatchSettings:
    s = _make_settings(tmp_path / "websites.db")
    db.ensure_schema(s)
    return s


class _SiteHandler(BaseHTTPRequestHandler):
    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def _respond(self, with_body: bool) -> None:
        path = urlsplit(self.path).path
        if path == "/redirect":
            self.send_response(302)
            self.send_header("Location", "/ok")
            self.send_header("Content-Length", "0")
            self.end_headers()
            return

        if path == "/slow":
            time.sleep(3.0)

        routes: dict[str, tuple[int, str]] = {
            "/ok": (200, "<html><body>fine</body></html>"),
            "/slow": (200, "<html><body>eventually</body></html>"),
            "/bad_gateway": (502, "Bad Gateway"),
            "/server_error": (500, "Internal Server Error"),
        }
        status, body = routes.get(path, (404, "Not Found"))
        body_bytes = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body_bytes)))
        self.end_headers()
        if with_body:
            self.wfile.write(body_bytes)

    def do_GET(self) -> None:  # noqa: N802
        self._respond(with_body=True)

    def do_HEAD(self) -> None:  # noqa: N802
        self._respond(with_body=False)


@pytest.fixture(scope="session")
def site_base_url() -> str:
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _SiteHandler)
    httpd.daemon_threads = True
    host, port = httpd.server_address
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()

    try:
        yield f"http://{host}:{port}"
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()


@pytest.fixture()
def silent_url() -> str:
    """A TCP port that completes the handshake (via the listen backlog) but never answers."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(16)
    host, port = sock.getsockname()
    try:
        yield f"http://{host}:{port}/"
    finally:
        sock.close()


@pytest.fixture()
def closed_port_url() -> str:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    host, port = sock.getsockname()
    sock.close()
    return f"http://{host}:{port}/"


@pytest.fixture()
def settings_factory(tmp_path: Path):
    def _factory(**overrides) -> WatchSettings:
        s = _make_settings(overrides.pop("db_path", tmp_path / "websites.db"), **overrides)
        db.ensure_schema(s)
        return s

    return _factory


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def failing_notifier() -> RecordingNotifier:
    return RecordingNotifier(fail=True)
