"""
Lock expiry reaper.

Releases holds whose time-to-live has elapsed and marks their held or
approved applications EXPIRED, so an unpaid hold frees its slots even when
no other request touches them.

Runs as an asyncio task in the application lifespan.
Uses the synchronous repositories via asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional

from backend.domain.models import ACTIVE_APPLICATION_STATUSES, ApplicationStatus, ReaperReport
from backend.repository.application_ledger import ApplicationLedger
from backend.repository.slot_calendar import SlotCalendar
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LockExpiryReaper:
    """Idempotent sweep over expired holds; overlapping runs are harmless."""

    def __init__(
        self,
        calendar: SlotCalendar,
        ledger: ApplicationLedger,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._calendar = calendar
        self._ledger = ledger
        self._settings = settings or get_settings()
        self._clock = clock or _utc_now

    def run_once(self, now: Optional[datetime] = None) -> ReaperReport:
        now = now or self._clock()
        batch_size = self._settings.reaper_batch_size
        expired_applications = 0
        released_slots = 0

        for application in self._ledger.list_expired_holds(now, batch_size):
            # Guarded by holder: a slot re-locked by someone else stays theirs.
            released_slots += self._calendar.release_held_by(
                application.holder, now, expired_before=now
            )
            if self._ledger.transition(
                application.application_id,
                ACTIVE_APPLICATION_STATUSES,
                ApplicationStatus.EXPIRED,
                now,
            ):
                expired_applications += 1

        # Locks without an application, e.g. acquisitions abandoned mid-way.
        for slot in self._calendar.list_expired_locks(now, batch_size):
            if self._calendar.release(slot.key, now, holder=slot.holder, expired_before=now):
                released_slots += 1

        if expired_applications or released_slots:
            logger.info(
                "Reaper expired %s application(s) and released %s slot(s)",
                expired_applications,
                released_slots,
            )
        return ReaperReport(
            expired_applications=expired_applications,
            released_slots=released_slots,
        )


async def reaper_loop(reaper: LockExpiryReaper, interval_seconds: float) -> None:
    """Periodic loop calling ``run_once``; survives errors, stops on cancellation."""
    logger.info("reaper_loop started (interval %ss)", interval_seconds)

    try:
        while True:
            try:
                await asyncio.to_thread(reaper.run_once)
            except asyncio.CancelledError:
                logger.info("reaper_loop cancelled")
                raise
            except Exception:
                logger.exception("reaper_loop error")

            await asyncio.sleep(interval_seconds)
    except asyncio.CancelledError:
        pass
