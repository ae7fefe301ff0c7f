"""Audit record of submitted banner applications."""

from __future__ import annotations

import sqlite3
from datetime import date, datetime
from typing import Optional, Sequence, Union

from backend.domain.errors import ApplicationNotFoundError
from backend.domain.models import (
    Application,
    ApplicationItem,
    ApplicationPage,
    ApplicationStatus,
    BannerType,
)
from backend.repository.data_repository import DataRepository, from_db_timestamp, to_db_timestamp
from backend.utils.logger import get_logger


logger = get_logger(__name__)


_APPLICATION_COLUMNS = """
    id, event_id, banner_type, title, image_url, link_url, status, total_amount,
    holder, fingerprint, lock_minutes, locked_until, created_at, updated_at, paid_at,
    approved_at, admin_comment
"""


class ApplicationLedger:
    """Append/update-own-row store of applications.

    Slots are referenced by holder token and item keys only; slot state is
    never written from here.
    """

    def __init__(self, repository: DataRepository) -> None:
        self._repository = repository

    def _load_items(
        self,
        conn: sqlite3.Connection,
        application_ids: Sequence[int],
    ) -> dict[int, list[ApplicationItem]]:
        items: dict[int, list[ApplicationItem]] = {app_id: [] for app_id in application_ids}
        if not application_ids:
            return items
        placeholders = ",".join("?" for _ in application_ids)
        rows = conn.execute(
            f"""
            SELECT application_id, slot_date, priority, price
            FROM BannerApplicationItems
            WHERE application_id IN ({placeholders})
            ORDER BY application_id ASC, position ASC;
            """,
            tuple(application_ids),
        ).fetchall()
        for row in rows:
            items[int(row["application_id"])].append(
                ApplicationItem(
                    slot_date=date.fromisoformat(str(row["slot_date"])),
                    priority=int(row["priority"]),
                    price=int(row["price"]),
                )
            )
        return items

    @staticmethod
    def _row_to_application(row: sqlite3.Row, items: list[ApplicationItem]) -> Application:
        return Application(
            application_id=int(row["id"]),
            event_id=int(row["event_id"]),
            banner_type=BannerType(str(row["banner_type"])),
            title=str(row["title"]),
            image_url=str(row["image_url"]),
            link_url=str(row["link_url"]) if row["link_url"] is not None else None,
            status=ApplicationStatus(str(row["status"])),
            total_amount=int(row["total_amount"]),
            holder=str(row["holder"]),
            fingerprint=str(row["fingerprint"]),
            lock_minutes=int(row["lock_minutes"]),
            locked_until=from_db_timestamp(row["locked_until"]),
            created_at=from_db_timestamp(row["created_at"]),
            updated_at=from_db_timestamp(row["updated_at"]),
            paid_at=from_db_timestamp(row["paid_at"]),
            approved_at=from_db_timestamp(row["approved_at"]),
            admin_comment=(
                str(row["admin_comment"]) if row["admin_comment"] is not None else None
            ),
            items=items,
        )

    def _hydrate(self, conn: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[Application]:
        items = self._load_items(conn, [int(row["id"]) for row in rows])
        return [self._row_to_application(row, items[int(row["id"])]) for row in rows]

    def create(
        self,
        *,
        event_id: int,
        banner_type: BannerType,
        title: str,
        image_url: str,
        link_url: Optional[str],
        items: Sequence[ApplicationItem],
        total_amount: int,
        holder: str,
        fingerprint: str,
        lock_minutes: int,
        locked_until: datetime,
        now: datetime,
    ) -> Application:
        """Insert a HELD application with its priced items and return it."""
        stamp = to_db_timestamp(now)
        with self._repository.session() as conn:
            cursor = conn.execute(
                """
                INSERT INTO BannerApplications (
                    event_id, banner_type, title, image_url, link_url, status,
                    total_amount, holder, fingerprint, lock_minutes, locked_until,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, 'HELD', ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    event_id,
                    banner_type.value,
                    title,
                    image_url,
                    link_url,
                    total_amount,
                    holder,
                    fingerprint,
                    lock_minutes,
                    to_db_timestamp(locked_until),
                    stamp,
                    stamp,
                ),
            )
            application_id = int(cursor.lastrowid)
            conn.executemany(
                """
                INSERT INTO BannerApplicationItems (
                    application_id, position, slot_date, priority, price
                )
                VALUES (?, ?, ?, ?, ?);
                """,
                [
                    (
                        application_id,
                        position,
                        item.slot_date.isoformat(),
                        item.priority,
                        item.price or 0,
                    )
                    for position, item in enumerate(items)
                ],
            )
            row = conn.execute(
                f"SELECT {_APPLICATION_COLUMNS} FROM BannerApplications WHERE id = ?;",
                (application_id,),
            ).fetchone()
            application = self._hydrate(conn, [row])[0]
        logger.info(
            "Recorded application %s for event %s (%s, %s slots, total %s)",
            application_id,
            event_id,
            banner_type.value,
            len(items),
            total_amount,
        )
        return application

    def get(self, application_id: int) -> Application:
        with self._repository.session() as conn:
            row = conn.execute(
                f"SELECT {_APPLICATION_COLUMNS} FROM BannerApplications WHERE id = ?;",
                (application_id,),
            ).fetchone()
            if row is None:
                raise ApplicationNotFoundError(f"Application {application_id} was not found")
            return self._hydrate(conn, [row])[0]

    def find_active_by_fingerprint(
        self,
        event_id: int,
        fingerprint: str,
        now: datetime,
    ) -> Optional[Application]:
        """Return an unexpired active application with an identical request, if any."""
        with self._repository.session() as conn:
            row = conn.execute(
                f"""
                SELECT {_APPLICATION_COLUMNS}
                FROM BannerApplications
                WHERE event_id = ?
                  AND fingerprint = ?
                  AND status IN ('HELD', 'APPROVED')
                  AND locked_until > ?
                ORDER BY id DESC
                LIMIT 1;
                """,
                (event_id, fingerprint, to_db_timestamp(now)),
            ).fetchone()
            if row is None:
                return None
            return self._hydrate(conn, [row])[0]

    def list_for_event(self, event_id: Optional[int] = None) -> list[Application]:
        """Newest first; without an event id every application is listed."""
        where, params = ("WHERE event_id = ?", (event_id,)) if event_id is not None else ("", ())
        with self._repository.session() as conn:
            rows = conn.execute(
                f"""
                SELECT {_APPLICATION_COLUMNS}
                FROM BannerApplications
                {where}
                ORDER BY id DESC;
                """,
                params,
            ).fetchall()
            return self._hydrate(conn, rows)

    def search(
        self,
        *,
        event_id: Optional[int] = None,
        status: Optional[ApplicationStatus] = None,
        banner_type: Optional[BannerType] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 0,
        size: int = 20,
    ) -> ApplicationPage:
        """Filtered, newest-first page; date bounds match applications with any item inside."""
        clauses: list[str] = []
        params: list[object] = []
        if event_id is not None:
            clauses.append("a.event_id = ?")
            params.append(event_id)
        if status is not None:
            clauses.append("a.status = ?")
            params.append(status.value)
        if banner_type is not None:
            clauses.append("a.banner_type = ?")
            params.append(banner_type.value)
        if start_date is not None or end_date is not None:
            item_clauses = ["i.application_id = a.id"]
            if start_date is not None:
                item_clauses.append("i.slot_date >= ?")
                params.append(start_date.isoformat())
            if end_date is not None:
                item_clauses.append("i.slot_date <= ?")
                params.append(end_date.isoformat())
            clauses.append(
                "EXISTS (SELECT 1 FROM BannerApplicationItems AS i WHERE "
                + " AND ".join(item_clauses)
                + ")"
            )
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._repository.session() as conn:
            total = int(
                conn.execute(
                    f"SELECT COUNT(*) AS count FROM BannerApplications AS a {where};",
                    tuple(params),
                ).fetchone()["count"]
            )
            rows = conn.execute(
                f"""
                SELECT {_APPLICATION_COLUMNS}
                FROM BannerApplications AS a
                {where}
                ORDER BY a.id DESC
                LIMIT ? OFFSET ?;
                """,
                (*params, size, page * size),
            ).fetchall()
            content = self._hydrate(conn, rows)
        return ApplicationPage(content=content, total_elements=total, page=page, size=size)

    def transition(
        self,
        application_id: int,
        from_status: Union[ApplicationStatus, Sequence[ApplicationStatus]],
        to_status: ApplicationStatus,
        now: datetime,
        admin_comment: Optional[str] = None,
    ) -> bool:
        """Move one application between statuses; False if it was not in ``from_status``.

        ``from_status`` may name several source statuses. Entering PAID stamps
        ``paid_at``, entering APPROVED stamps ``approved_at``, and a given
        ``admin_comment`` replaces the stored one.
        """
        sources = (from_status,) if isinstance(from_status, ApplicationStatus) else tuple(from_status)
        stamp = to_db_timestamp(now)
        assignments = ["status = ?", "updated_at = ?"]
        params: list[object] = [to_status.value, stamp]
        if to_status is ApplicationStatus.PAID:
            assignments.append("paid_at = ?")
            params.append(stamp)
        elif to_status.is_active:
            # Reverting a failed payment.
            assignments.append("paid_at = NULL")
        if to_status is ApplicationStatus.APPROVED:
            assignments.append("approved_at = ?")
            params.append(stamp)
        if admin_comment is not None:
            assignments.append("admin_comment = ?")
            params.append(admin_comment)
        placeholders = ",".join("?" for _ in sources)

        with self._repository.session() as conn:
            cursor = conn.execute(
                f"""
                UPDATE BannerApplications
                SET {", ".join(assignments)}
                WHERE id = ? AND status IN ({placeholders});
                """,
                (*params, application_id, *(status.value for status in sources)),
            )
            changed = cursor.rowcount == 1
        if changed:
            logger.info(
                "Application %s moved %s -> %s",
                application_id,
                "/".join(status.value for status in sources),
                to_status.value,
            )
        return changed

    def list_expired_holds(self, now: datetime, limit: int) -> list[Application]:
        with self._repository.session() as conn:
            rows = conn.execute(
                f"""
                SELECT {_APPLICATION_COLUMNS}
                FROM BannerApplications
                WHERE status IN ('HELD', 'APPROVED') AND locked_until <= ?
                ORDER BY locked_until ASC, id ASC
                LIMIT ?;
                """,
                (to_db_timestamp(now), limit),
            ).fetchall()
            return self._hydrate(conn, rows)
