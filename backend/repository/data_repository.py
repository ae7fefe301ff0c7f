"""SQLite bootstrap shared by the slot calendar and the application ledger."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from backend.domain.errors import StorageUnavailableError
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    """Serialize to a fixed-width UTC string so SQL text comparison orders correctly."""
    return as_utc(value).isoformat(timespec="microseconds")


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class DataRepository:
    """Owns the SQLite file, its schema and connection lifecycle."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_timeout_seconds,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def session(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection that commits on success and always closes.

        Any ``sqlite3.Error`` surfaces as ``StorageUnavailableError``.
        """
        try:
            connection = self._connect()
        except sqlite3.Error as exc:
            raise StorageUnavailableError(f"Database unavailable: {exc}") from exc
        try:
            with connection:
                yield connection
        except sqlite3.Error as exc:
            raise StorageUnavailableError(f"Database operation failed: {exc}") from exc
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        with self.session() as conn:
            cursor = conn.cursor()

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS BannerSlots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    banner_type TEXT NOT NULL CHECK (banner_type IN ('HERO', 'SEARCH_TOP')),
                    slot_date TEXT NOT NULL,
                    priority INTEGER NOT NULL CHECK (priority > 0),
                    status TEXT NOT NULL CHECK (status IN ('AVAILABLE', 'LOCKED', 'SOLD')),
                    price INTEGER NOT NULL CHECK (price >= 0),
                    holder TEXT,
                    locked_until TEXT,
                    version INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    UNIQUE (banner_type, slot_date, priority)
                );
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS BannerApplications (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id INTEGER NOT NULL CHECK (event_id > 0),
                    banner_type TEXT NOT NULL CHECK (banner_type IN ('HERO', 'SEARCH_TOP')),
                    title TEXT NOT NULL,
                    image_url TEXT NOT NULL,
                    link_url TEXT,
                    status TEXT NOT NULL
                        CHECK (status IN (
                            'HELD', 'APPROVED', 'PAID', 'REJECTED', 'EXPIRED', 'CANCELLED'
                        )),
                    total_amount INTEGER NOT NULL CHECK (total_amount >= 0),
                    holder TEXT NOT NULL UNIQUE,
                    fingerprint TEXT NOT NULL,
                    lock_minutes INTEGER NOT NULL CHECK (lock_minutes > 0),
                    locked_until TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    paid_at TEXT,
                    approved_at TEXT,
                    admin_comment TEXT
                );
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS BannerApplicationItems (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    application_id INTEGER NOT NULL,
                    position INTEGER NOT NULL,
                    slot_date TEXT NOT NULL,
                    priority INTEGER NOT NULL CHECK (priority > 0),
                    price INTEGER NOT NULL CHECK (price >= 0),
                    FOREIGN KEY (application_id) REFERENCES BannerApplications(id)
                );
                """
            )

            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_slots_status_locked_until
                ON BannerSlots(status, locked_until);
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_slots_holder
                ON BannerSlots(holder);
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_applications_status_locked_until
                ON BannerApplications(status, locked_until);
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_applications_event_fingerprint
                ON BannerApplications(event_id, fingerprint, status);
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_application_items_application
                ON BannerApplicationItems(application_id, position);
                """
            )
        logger.info("Database initialized at %s", self._db_path)
