"""Authoritative per-day, per-type, per-priority slot inventory."""

from __future__ import annotations

import sqlite3
from datetime import date, datetime
from typing import Optional, Sequence

from backend.domain.errors import LockExpiredError
from backend.domain.models import BannerType, Slot, SlotKey, SlotStatus
from backend.domain.pricing import PricingEngine
from backend.repository.data_repository import (
    DataRepository,
    as_utc,
    from_db_timestamp,
    to_db_timestamp,
)
from backend.utils.logger import get_logger


logger = get_logger(__name__)


_SLOT_COLUMNS = "banner_type, slot_date, priority, status, price, holder, locked_until"


class SlotCalendar:
    """Stores slot state; absence of a row means available at the standard price.

    ``compare_and_lock`` is the only acquisition primitive. It is a single
    conditional upsert, so two callers racing on one key cannot both win.
    """

    def __init__(self, repository: DataRepository, pricing: PricingEngine) -> None:
        self._repository = repository
        self._pricing = pricing

    def _synthesize(self, key: SlotKey) -> Slot:
        return Slot(key=key, status=SlotStatus.AVAILABLE, price=self._pricing.price_for_key(key))

    def _row_to_slot(self, row: sqlite3.Row, now: Optional[datetime]) -> Slot:
        key = SlotKey(
            banner_type=BannerType(str(row["banner_type"])),
            slot_date=date.fromisoformat(str(row["slot_date"])),
            priority=int(row["priority"]),
        )
        status = SlotStatus(str(row["status"]))
        holder = row["holder"]
        locked_until = from_db_timestamp(row["locked_until"])
        if (
            now is not None
            and status is SlotStatus.LOCKED
            and locked_until is not None
            and locked_until <= as_utc(now)
        ):
            # An elapsed hold is already free even before the reaper clears the row.
            return Slot(key=key, status=SlotStatus.AVAILABLE, price=int(row["price"]))
        return Slot(
            key=key,
            status=status,
            price=int(row["price"]),
            holder=str(holder) if holder is not None else None,
            locked_until=locked_until,
        )

    def get(self, key: SlotKey, now: Optional[datetime] = None) -> Slot:
        """Return the slot, synthesizing an AVAILABLE one if never materialized.

        With ``now`` given, an expired lock is reported as AVAILABLE.
        """
        with self._repository.session() as conn:
            row = conn.execute(
                f"""
                SELECT {_SLOT_COLUMNS}
                FROM BannerSlots
                WHERE banner_type = ? AND slot_date = ? AND priority = ?;
                """,
                (key.banner_type.value, key.slot_date.isoformat(), key.priority),
            ).fetchone()
        if row is None:
            return self._synthesize(key)
        return self._row_to_slot(row, now)

    def list_range(
        self,
        banner_type: BannerType,
        date_from: date,
        date_to: date,
        now: Optional[datetime] = None,
    ) -> list[Slot]:
        """Return materialized slots in the inclusive range from one snapshot read."""
        with self._repository.session() as conn:
            rows = conn.execute(
                f"""
                SELECT {_SLOT_COLUMNS}
                FROM BannerSlots
                WHERE banner_type = ?
                  AND slot_date >= ?
                  AND slot_date <= ?
                ORDER BY slot_date ASC, priority ASC;
                """,
                (banner_type.value, date_from.isoformat(), date_to.isoformat()),
            ).fetchall()
        return [self._row_to_slot(row, now) for row in rows]

    def compare_and_lock(
        self,
        key: SlotKey,
        holder: str,
        until: datetime,
        now: datetime,
    ) -> bool:
        """Transition AVAILABLE (or expired LOCKED) to LOCKED for ``holder``."""
        stamp = to_db_timestamp(now)
        with self._repository.session() as conn:
            cursor = conn.execute(
                """
                INSERT INTO BannerSlots (
                    banner_type, slot_date, priority, status, price,
                    holder, locked_until, version, updated_at
                )
                VALUES (?, ?, ?, 'LOCKED', ?, ?, ?, 1, ?)
                ON CONFLICT (banner_type, slot_date, priority) DO UPDATE SET
                    status = 'LOCKED',
                    price = excluded.price,
                    holder = excluded.holder,
                    locked_until = excluded.locked_until,
                    version = BannerSlots.version + 1,
                    updated_at = excluded.updated_at
                WHERE BannerSlots.status = 'AVAILABLE'
                   OR (BannerSlots.status = 'LOCKED' AND BannerSlots.locked_until <= ?);
                """,
                (
                    key.banner_type.value,
                    key.slot_date.isoformat(),
                    key.priority,
                    self._pricing.price_for_key(key),
                    holder,
                    to_db_timestamp(until),
                    stamp,
                    stamp,
                ),
            )
            acquired = cursor.rowcount == 1
        if acquired:
            logger.debug("Locked %s for holder %s until %s", key.describe(), holder, until)
        return acquired

    def release(
        self,
        key: SlotKey,
        now: datetime,
        holder: Optional[str] = None,
        expired_before: Optional[datetime] = None,
    ) -> bool:
        """LOCKED to AVAILABLE; returns False (no-op) when the slot is not LOCKED.

        ``holder`` and ``expired_before`` narrow the release so it never
        frees a lock somebody else acquired in the meantime.
        """
        clauses = ["banner_type = ?", "slot_date = ?", "priority = ?", "status = 'LOCKED'"]
        params: list[object] = [key.banner_type.value, key.slot_date.isoformat(), key.priority]
        if holder is not None:
            clauses.append("holder = ?")
            params.append(holder)
        if expired_before is not None:
            clauses.append("locked_until <= ?")
            params.append(to_db_timestamp(expired_before))

        with self._repository.session() as conn:
            cursor = conn.execute(
                f"""
                UPDATE BannerSlots
                SET status = 'AVAILABLE',
                    holder = NULL,
                    locked_until = NULL,
                    version = version + 1,
                    updated_at = ?
                WHERE {" AND ".join(clauses)};
                """,
                (to_db_timestamp(now), *params),
            )
            return cursor.rowcount == 1

    def release_held_by(
        self,
        holder: str,
        now: datetime,
        expired_before: Optional[datetime] = None,
    ) -> int:
        """Release every lock still owned by ``holder``; returns the number freed."""
        query = """
            UPDATE BannerSlots
            SET status = 'AVAILABLE',
                holder = NULL,
                locked_until = NULL,
                version = version + 1,
                updated_at = ?
            WHERE holder = ? AND status = 'LOCKED'
        """
        params: list[object] = [to_db_timestamp(now), holder]
        if expired_before is not None:
            query += " AND locked_until <= ?"
            params.append(to_db_timestamp(expired_before))
        with self._repository.session() as conn:
            cursor = conn.execute(query + ";", tuple(params))
            return int(cursor.rowcount)

    def mark_sold(self, key: SlotKey, holder: str, now: datetime) -> None:
        """LOCKED by ``holder`` to SOLD; raises ``LockExpiredError`` otherwise."""
        self.mark_sold_all([key], holder, now)

    def mark_sold_all(self, keys: Sequence[SlotKey], holder: str, now: datetime) -> None:
        """Convert every key in one transaction, or none of them."""
        stamp = to_db_timestamp(now)
        with self._repository.session() as conn:
            for key in sorted(keys):
                cursor = conn.execute(
                    """
                    UPDATE BannerSlots
                    SET status = 'SOLD',
                        locked_until = NULL,
                        version = version + 1,
                        updated_at = ?
                    WHERE banner_type = ?
                      AND slot_date = ?
                      AND priority = ?
                      AND status = 'LOCKED'
                      AND holder = ?
                      AND locked_until > ?;
                    """,
                    (
                        stamp,
                        key.banner_type.value,
                        key.slot_date.isoformat(),
                        key.priority,
                        holder,
                        stamp,
                    ),
                )
                if cursor.rowcount == 1:
                    continue
                row = conn.execute(
                    """
                    SELECT status, holder
                    FROM BannerSlots
                    WHERE banner_type = ? AND slot_date = ? AND priority = ?;
                    """,
                    (key.banner_type.value, key.slot_date.isoformat(), key.priority),
                ).fetchone()
                if row is not None and row["status"] == "SOLD" and row["holder"] == holder:
                    continue
                # Raising inside the session rolls back keys converted so far.
                raise LockExpiredError(
                    f"Hold on {key.describe()} is no longer held; submit a new application"
                )

    def list_expired_locks(self, now: datetime, limit: int) -> list[Slot]:
        with self._repository.session() as conn:
            rows = conn.execute(
                f"""
                SELECT {_SLOT_COLUMNS}
                FROM BannerSlots
                WHERE status = 'LOCKED' AND locked_until <= ?
                ORDER BY locked_until ASC, slot_date ASC, priority ASC
                LIMIT ?;
                """,
                (to_db_timestamp(now), limit),
            ).fetchall()
        return [self._row_to_slot(row, None) for row in rows]
