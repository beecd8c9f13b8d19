"""Persistence for forms and cooldowns.

Forms live in one keyspace per guild, keyed by form id, and are always
written as whole aggregates. Cooldowns are TTL entries keyed by
(guild, form, user). Both contracts are implemented here on SQLite and in
``redis_state`` on Redis.
"""

import asyncio
import functools
import json
import logging
import sqlite3
import threading
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Protocol, TypeVar

from .errors import TransportError
from .models import Form, FormField, FormId, FormRef

logger = logging.getLogger(__name__)


class FormStore(Protocol):
    """Key-value persistence of form definitions, scoped per guild."""

    def get_form(self, form_ref: FormRef) -> Form | None:
        ...

    def save_form(self, guild_id: int, form: Form) -> None:
        ...

    def delete_form(self, guild_id: int, form_id: FormId) -> bool:
        ...

    def get_form_ids(self, guild_id: int) -> list[tuple[FormId, str]]:
        ...

    def get_fields(self, form_ref: FormRef) -> list[FormField] | None:
        ...


class CooldownTracker(Protocol):
    """TTL-based rate-limit entries keyed by (guild, form, user)."""

    def cooldown_remaining(self, form_ref: FormRef, user_id: int) -> timedelta | None:
        ...

    def trigger_cooldown(self, form_ref: FormRef, user_id: int, duration: timedelta | None) -> None:
        ...

    def clear_cooldown(self, form_ref: FormRef, user_id: int) -> bool:
        ...


class StateStore(FormStore, CooldownTracker, Protocol):
    """A backend providing both forms and cooldowns."""

    def close(self) -> None:
        ...


T = TypeVar("T")


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking store call in the default executor.

    Store backends do socket or disk I/O without awaiting, so callers on the
    event loop go through here.
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


def serialize_form(form: Form) -> str:
    return json.dumps(form.to_dict())


def deserialize_form(data: str | bytes) -> Form:
    return Form.from_dict(json.loads(data))


SCHEMA = """
-- Forms, one row per (guild, form); data is the JSON-encoded aggregate
CREATE TABLE IF NOT EXISTS forms (
    guild_id INTEGER NOT NULL,
    form_id TEXT NOT NULL,
    title TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (guild_id, form_id)
);

-- Cooldowns; rows past expires_at are treated as absent
CREATE TABLE IF NOT EXISTS cooldowns (
    guild_id INTEGER NOT NULL,
    form_id TEXT NOT NULL,
    user_id INTEGER NOT NULL,
    expires_at REAL NOT NULL,
    PRIMARY KEY (guild_id, form_id, user_id)
);

CREATE INDEX IF NOT EXISTS idx_cooldowns_expiry ON cooldowns(expires_at);
"""


class SqliteStateStore:
    """Form store and cooldown tracker backed by a single SQLite file.

    SQLite has no native TTL, so cooldown rows carry an absolute expiry
    computed from ``clock`` and are purged lazily when read. The connection
    is shared across executor threads; every statement runs under a lock.
    """

    def __init__(self, db_path: Path | str, clock: Callable[[], float] = time.time):
        """Initialize the state store.

        Args:
            db_path: Path to SQLite database file
            clock: Source of the current time in seconds
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.clock = clock
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._lock:
            self.conn.executescript(SCHEMA)
            self.conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self.conn.close()

    def _query(self, sql: str, params: tuple) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def _write(self, sql: str, params: tuple) -> int:
        """Execute and commit a statement, returning the affected row count."""
        with self._lock:
            cursor = self.conn.execute(sql, params)
            self.conn.commit()
            return cursor.rowcount

    # --- Forms ---

    def get_form(self, form_ref: FormRef) -> Form | None:
        try:
            rows = self._query(
                "SELECT data FROM forms WHERE guild_id = ? AND form_id = ?",
                (form_ref.guild_id, form_ref.form_id)
            )
        except sqlite3.Error as e:
            raise TransportError(f"Failed to load form {form_ref.form_id}: {e}") from e

        if rows:
            return deserialize_form(rows[0]["data"])
        return None

    def save_form(self, guild_id: int, form: Form) -> None:
        try:
            self._write(
                """
                INSERT INTO forms (guild_id, form_id, title, data)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (guild_id, form_id) DO UPDATE SET
                    title = excluded.title,
                    data = excluded.data
                """,
                (guild_id, form.id, form.title, serialize_form(form))
            )
        except sqlite3.Error as e:
            raise TransportError(f"Failed to save form {form.id}: {e}") from e
        logger.debug(f"Saved form {form.id} in guild {guild_id}")

    def delete_form(self, guild_id: int, form_id: FormId) -> bool:
        try:
            deleted = self._write(
                "DELETE FROM forms WHERE guild_id = ? AND form_id = ?",
                (guild_id, form_id)
            )
        except sqlite3.Error as e:
            raise TransportError(f"Failed to delete form {form_id}: {e}") from e
        return deleted > 0

    def get_form_ids(self, guild_id: int) -> list[tuple[FormId, str]]:
        try:
            rows = self._query(
                "SELECT form_id, title FROM forms WHERE guild_id = ? ORDER BY title",
                (guild_id,)
            )
        except sqlite3.Error as e:
            raise TransportError(f"Failed to list forms of guild {guild_id}: {e}") from e
        return [(row["form_id"], row["title"]) for row in rows]

    def get_fields(self, form_ref: FormRef) -> list[FormField] | None:
        form = self.get_form(form_ref)
        return form.fields if form else None

    # --- Cooldowns ---

    def cooldown_remaining(self, form_ref: FormRef, user_id: int) -> timedelta | None:
        try:
            rows = self._query(
                """
                SELECT expires_at FROM cooldowns
                WHERE guild_id = ? AND form_id = ? AND user_id = ?
                """,
                (form_ref.guild_id, form_ref.form_id, user_id)
            )
            if not rows:
                return None

            remaining = rows[0]["expires_at"] - self.clock()
            if remaining <= 0:
                self._write("DELETE FROM cooldowns WHERE expires_at <= ?", (self.clock(),))
                return None
        except sqlite3.Error as e:
            raise TransportError(f"Failed to read cooldown: {e}") from e
        return timedelta(seconds=remaining)

    def trigger_cooldown(self, form_ref: FormRef, user_id: int, duration: timedelta | None) -> None:
        if duration is None or duration.total_seconds() <= 0:
            return

        expires_at = self.clock() + duration.total_seconds()
        try:
            self._write(
                """
                INSERT INTO cooldowns (guild_id, form_id, user_id, expires_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (guild_id, form_id, user_id) DO UPDATE SET
                    expires_at = excluded.expires_at
                """,
                (form_ref.guild_id, form_ref.form_id, user_id, expires_at)
            )
        except sqlite3.Error as e:
            raise TransportError(f"Failed to set cooldown: {e}") from e

    def clear_cooldown(self, form_ref: FormRef, user_id: int) -> bool:
        try:
            cleared = self._write(
                """
                DELETE FROM cooldowns
                WHERE guild_id = ? AND form_id = ? AND user_id = ? AND expires_at > ?
                """,
                (form_ref.guild_id, form_ref.form_id, user_id, self.clock())
            )
        except sqlite3.Error as e:
            raise TransportError(f"Failed to clear cooldown: {e}") from e
        return cleared > 0


def create_state_store(url: str, **kwargs) -> StateStore:
    """Factory to create a state store from a URL.

    ``sqlite:///relative/path.sqlite``, ``sqlite:////absolute/path.sqlite``
    and ``redis://`` / ``rediss://`` URLs are supported.
    """
    if url.startswith("sqlite:///"):
        return SqliteStateStore(url[len("sqlite:///"):])
    elif url.startswith(("redis://", "rediss://", "unix://")):
        from .redis_state import RedisStateStore
        return RedisStateStore.from_url(url, **kwargs)
    else:
        raise ValueError(f"Unknown store url: {url}")
