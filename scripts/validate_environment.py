#!/usr/bin/env python3
"""Validate local canteen service environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from canteen.domain.models import BookingItem
from canteen.repository.data_repository import DataRepository
from canteen.services.analytics_service import CrowdAnalyticsService
from canteen.services.queue_service import TokenQueueService
from canteen.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="canteen-env-")

    # CHECK 1: interpreter
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: third-party packages
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("numpy", "numpy"),
        ("pandas", "pandas"),
        ("requests", "requests"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
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
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "canteen_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 3: schema
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except RuntimeError as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: default catalog
        try:
            repository.seed_default_catalog()
            slots = repository.list_slots()
            items = repository.list_menu_items()
            if len(slots) != len(validation_settings.seed_slots) or not items:
                raise RuntimeError(f"unexpected catalog: {len(slots)} slots, {len(items)} items")
            ok, line = _print_result(
                "Default catalog",
                True,
                f": {len(slots)} slots, {len(items)} menu items",
            )
        except RuntimeError as exc:
            ok, line = _print_result("Default catalog", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: queue round trip and analytics snapshot
        try:
            queue = TokenQueueService(repository=repository, settings=validation_settings)
            slot = repository.list_slots()[0]
            menu_item_id = min(repository.list_slot_menu_item_ids(slot.slot_id))
            booking = queue.enqueue(slot.slot_id, "env-check", [BookingItem(menu_item_id, 1)])
            called = queue.call_next(slot.slot_id)
            queue.mark_served(called.booking_id)
            analytics = CrowdAnalyticsService(
                repository=repository,
                settings=validation_settings,
                queue=queue,
            )
            snapshot = analytics.get_analytics(1)
            ok, line = _print_result(
                "Queue round trip",
                True,
                f": token={booking.token_number} slots_analyzed={len(snapshot['slots'])}",
            )
        except Exception as exc:
            ok, line = _print_result("Queue round trip", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Canteen Environment Validation")
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
