from __future__ import annotations

import re
import sqlite3
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from site_watch.errors import DuplicateError, PersistenceError, ValidationError
from site_watch.settings import WatchSettings


SCHEMA_VERSION = 1

_URL_RE = re.compile(r"^https?://\S+$")


class EndpointStatus(str, Enum):
    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"


@dataclass(frozen=True)
class Identity:
    id: int
    username: str = ""
    first_name: str = ""

    @property
    def display_name(self) -> str:
        if self.username:
            return f"@{self.username}"
        return self.first_name or str(self.id)


@dataclass(frozen=True)
class Endpoint:
    id: int
    url: str
    owner_id: int
    status: EndpointStatus
    status_changed_ts: float | None
    created_at_ts: float


def _utc_ts() -> float:
    return float(time.time())


def validate_url(url: str) -> str:
    """Return the stripped URL or raise ValidationError if it is not http(s)."""
    s = str(url or "").strip()
    if not _URL_RE.match(s):
        raise ValidationError(f"url must start with http:// or https:// url={s[:200]!r}")
    return s


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db_path")
    if p != ":memory:":
        Path(p).parent.mkdir(parents=True, exist_ok=True)
    try:
        conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    except sqlite3.Error as exc:
        raise PersistenceError(f"cannot open registry db_path={p}") from exc
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute("PRAGMA busy_timeout = 5000;")
    except sqlite3.Error as exc:
        conn.close()
        raise PersistenceError(f"cannot open registry db_path={p}") from exc
    # Best-effort: WAL lets readers run while a probe result is being written.
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.Error:
        pass
    return conn


def ensure_schema(settings: WatchSettings) -> None:
    conn = _connect(settings.db_path)
    try:
        _ensure_schema_conn(conn)
    except sqlite3.Error as exc:
        raise PersistenceError("schema setup failed") from exc
    finally:
        conn.close()


def _ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return

    if cur == 0:
        _apply_v1(conn)
        conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))
        return

    raise RuntimeError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")


def _apply_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS identities (
          id INTEGER PRIMARY KEY,
          username TEXT NOT NULL DEFAULT '',
          first_name TEXT NOT NULL DEFAULT '',
          updated_at_ts REAL NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS endpoints (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          url TEXT NOT NULL,
          status TEXT NOT NULL DEFAULT 'unknown', -- unknown|online|offline
          owner_id INTEGER NOT NULL,
          status_changed_ts REAL,
          created_at_ts REAL NOT NULL,
          UNIQUE(owner_id, url)
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_endpoints_owner ON endpoints(owner_id, id);")


def _row_to_endpoint(row: sqlite3.Row) -> Endpoint:
    try:
        status = EndpointStatus(str(row["status"]))
    except ValueError:
        status = EndpointStatus.UNKNOWN
    return Endpoint(
        id=int(row["id"]),
        url=str(row["url"]),
        owner_id=int(row["owner_id"]),
        status=status,
        status_changed_ts=float(row["status_changed_ts"]) if row["status_changed_ts"] is not None else None,
        created_at_ts=float(row["created_at_ts"]),
    )


def upsert_identity(settings: WatchSettings, identity: Identity) -> None:
    conn = _connect(settings.db_path)
    try:
        _ensure_schema_conn(conn)
        conn.execute(
            """
            INSERT INTO identities (id, username, first_name, updated_at_ts)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              username=excluded.username,
              first_name=excluded.first_name,
              updated_at_ts=excluded.updated_at_ts
            """,
            (int(identity.id), identity.username or "", identity.first_name or "", _utc_ts()),
        )
    except sqlite3.Error as exc:
        raise PersistenceError(f"identity upsert failed id={identity.id}") from exc
    finally:
        conn.close()


def get_identity(settings: WatchSettings, *, identity_id: int) -> Identity | None:
    conn = _connect(settings.db_path)
    try:
        _ensure_schema_conn(conn)
        row = conn.execute(
            "SELECT id, username, first_name FROM identities WHERE id=?",
            (int(identity_id),),
        ).fetchone()
        if not row:
            return None
        return Identity(id=int(row["id"]), username=str(row["username"]), first_name=str(row["first_name"]))
    except sqlite3.Error as exc:
        raise PersistenceError(f"identity read failed id={identity_id}") from exc
    finally:
        conn.close()


def add_endpoint(settings: WatchSettings, *, owner_id: int, url: str) -> Endpoint:
    """
    Register url for owner_id with status=unknown.

    Raises ValidationError before touching the database, DuplicateError if the
    (owner, url) pair already exists.
    """
    clean_url = validate_url(url)
    conn = _connect(settings.db_path)
    try:
        _ensure_schema_conn(conn)
        now = _utc_ts()
        try:
            cur = conn.execute(
                "INSERT INTO endpoints (url, status, owner_id, status_changed_ts, created_at_ts) VALUES (?, ?, ?, NULL, ?)",
                (clean_url, EndpointStatus.UNKNOWN.value, int(owner_id), now),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateError(int(owner_id), clean_url) from exc
        return Endpoint(
            id=int(cur.lastrowid),
            url=clean_url,
            owner_id=int(owner_id),
            status=EndpointStatus.UNKNOWN,
            status_changed_ts=None,
            created_at_ts=now,
        )
    except sqlite3.Error as exc:
        raise PersistenceError(f"endpoint insert failed owner_id={owner_id}") from exc
    finally:
        conn.close()


def remove_endpoint(settings: WatchSettings, *, owner_id: int, url: str) -> bool:
    conn = _connect(settings.db_path)
    try:
        _ensure_schema_conn(conn)
        cur = conn.execute(
            "DELETE FROM endpoints WHERE url=? AND owner_id=?",
            (str(url or "").strip(), int(owner_id)),
        )
        return int(cur.rowcount or 0) > 0
    except sqlite3.Error as exc:
        raise PersistenceError(f"endpoint delete failed owner_id={owner_id}") from exc
    finally:
        conn.close()


def rename_endpoint(settings: WatchSettings, *, owner_id: int, old_url: str, new_url: str) -> bool:
    """
    Point an existing endpoint at new_url and reset its status to unknown.

    Returns False when old_url is not registered for the owner.
    """
    clean_new = validate_url(new_url)
    conn = _connect(settings.db_path)
    try:
        _ensure_schema_conn(conn)
        try:
            cur = conn.execute(
                """
                UPDATE endpoints
                SET url=?, status=?, status_changed_ts=NULL
                WHERE url=? AND owner_id=?
                """,
                (clean_new, EndpointStatus.UNKNOWN.value, str(old_url or "").strip(), int(owner_id)),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateError(int(owner_id), clean_new) from exc
        return int(cur.rowcount or 0) > 0
    except sqlite3.Error as exc:
        raise PersistenceError(f"endpoint rename failed owner_id={owner_id}") from exc
    finally:
        conn.close()


def list_endpoints_for(settings: WatchSettings, *, owner_id: int) -> list[Endpoint]:
    conn = _connect(settings.db_path)
    try:
        _ensure_schema_conn(conn)
        rows = conn.execute(
            "SELECT * FROM endpoints WHERE owner_id=? ORDER BY id ASC",
            (int(owner_id),),
        ).fetchall()
        return [_row_to_endpoint(r) for r in rows]
    except sqlite3.Error as exc:
        raise PersistenceError(f"endpoint list failed owner_id={owner_id}") from exc
    finally:
        conn.close()


def list_all_endpoints(settings: WatchSettings) -> list[Endpoint]:
    """Snapshot of every endpoint, read in a single statement."""
    conn = _connect(settings.db_path)
    try:
        _ensure_schema_conn(conn)
        rows = conn.execute("SELECT * FROM endpoints ORDER BY id ASC").fetchall()
        return [_row_to_endpoint(r) for r in rows]
    except sqlite3.Error as exc:
        raise PersistenceError("endpoint snapshot failed") from exc
    finally:
        conn.close()


def set_status(
    settings: WatchSettings,
    *,
    endpoint_id: int,
    status: EndpointStatus,
    expected_url: str | None = None,
) -> EndpointStatus | None:
    """
    Write status for one row and return the value it replaced.

    Returns None if the endpoint was deleted in the meantime, or, when
    expected_url is given, if the row now points at a different URL. Concurrent
    writers for the same row are last-write-wins.
    """
    status = EndpointStatus(status)
    conn = _connect(settings.db_path)
    try:
        _ensure_schema_conn(conn)
        conn.execute("BEGIN IMMEDIATE;")
        try:
            row = conn.execute("SELECT status, url FROM endpoints WHERE id=?", (int(endpoint_id),)).fetchone()
            if not row or (expected_url is not None and str(row["url"]) != expected_url):
                conn.execute("ROLLBACK;")
                return None
            try:
                previous = EndpointStatus(str(row["status"]))
            except ValueError:
                previous = EndpointStatus.UNKNOWN
            if previous != status:
                conn.execute(
                    "UPDATE endpoints SET status=?, status_changed_ts=? WHERE id=?",
                    (status.value, _utc_ts(), int(endpoint_id)),
                )
            conn.execute("COMMIT;")
        except Exception:
            conn.execute("ROLLBACK;")
            raise
        return previous
    except sqlite3.Error as exc:
        raise PersistenceError(f"status write failed endpoint_id={endpoint_id}") from exc
    finally:
        conn.close()
