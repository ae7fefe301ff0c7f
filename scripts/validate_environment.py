#!/usr/bin/env python3
"""Validate local reservation engine environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.domain.constraints import InventoryConfig
from backend.domain.models import BannerType, SlotKey, SlotStatus
from backend.domain.pricing import PricingEngine
from backend.repository.application_ledger import ApplicationLedger
from backend.repository.data_repository import DataRepository
from backend.repository.slot_calendar import SlotCalendar
from backend.services.reaper_service import LockExpiryReaper
from backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="banner-env-")

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_specs = ["fastapi", "uvicorn", "pydantic", "httpx", "pytest"]
    import_errors: list[str] = []
    for module_name in package_specs:
        try:
            importlib.import_module(module_name)
        except ImportError as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        settings = replace(get_settings(), database_path=Path(temp_dir) / "banner_validation.db")
        repository = DataRepository(settings)

        # CHECK 3: Configuration
        pricing: PricingEngine | None = None
        try:
            pricing = PricingEngine(InventoryConfig.from_settings(settings))
            ok, line = _print_result(
                "Pricing configuration",
                True,
                f": HERO rank 1 = {pricing.price(BannerType.HERO, 1)}",
            )
        except ValueError as exc:
            ok, line = _print_result("Pricing configuration", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Lock, conflict and expiry round-trip
        try:
            if pricing is None:
                raise RuntimeError("skipped: pricing configuration is invalid")
            calendar = SlotCalendar(repository, pricing)
            reaper = LockExpiryReaper(calendar, ApplicationLedger(repository), settings=settings)
            now = datetime.now(timezone.utc)
            key = SlotKey(BannerType.SEARCH_TOP, date.today(), 1)
            if not calendar.compare_and_lock(key, "smoke-holder-a", now + timedelta(minutes=1), now):
                raise RuntimeError("first lock was refused")
            if calendar.compare_and_lock(key, "smoke-holder-b", now + timedelta(minutes=1), now):
                raise RuntimeError("second holder acquired a locked slot")
            later = now + timedelta(minutes=2)
            reaper.run_once(later)
            if calendar.get(key, later).status is not SlotStatus.AVAILABLE:
                raise RuntimeError("expired lock was not released")
            ok, line = _print_result("Lock / conflict / expiry round-trip", True)
        except Exception as exc:
            ok, line = _print_result("Lock / conflict / expiry round-trip", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Banner Engine Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
