#!/usr/bin/env python3
"""Database overview and integrity checks for AssetLifecycle."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from sqlalchemy import create_engine, func, inspect, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, aliased

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.base import Base
from models.asset_models import (
    ActivityLog,
    Asset,
    AssetAudit,
    AssetBorrowing,
    BorrowingStatus,
    Employee,
    ServiceRequest,
)
from services.borrowing_service import find_status_mismatches


EXPECTED_TABLES = list(Base.metadata.tables)


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _get_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True, future=True)


def _count(db: Session, stmt) -> int:
    return int(db.execute(select(func.count()).select_from(stmt.subquery())).scalar() or 0)


def _run_existence_checks(engine: Engine) -> list[CheckResult]:
    present = set(inspect(engine).get_table_names())
    return [CheckResult(f"table:{table}", table in present, "ok" if table in present else "missing") for table in EXPECTED_TABLES]


def _run_column_checks(engine: Engine) -> list[CheckResult]:
    inspector = inspect(engine)
    present_tables = set(inspector.get_table_names())
    results: list[CheckResult] = []
    for table_name, table in Base.metadata.tables.items():
        if table_name not in present_tables:
            continue
        present = {column["name"] for column in inspector.get_columns(table_name)}
        missing = [column.name for column in table.columns if column.name not in present]
        results.append(
            CheckResult(
                f"columns:{table_name}",
                not missing,
                "ok" if not missing else f"missing={','.join(missing)}",
            )
        )
    return results


def run_integrity_checks(db: Session) -> list[CheckResult]:
    checks: list[CheckResult] = []

    mismatches = find_status_mismatches(db)
    checks.append(
        CheckResult(
            "assets:status_matches_active_borrowings",
            not mismatches,
            f"count={len(mismatches)}" + (f" assets={[row['assetID'] for row in mismatches]}" if mismatches else ""),
        )
    )

    multiple_active = _count(
        db,
        select(AssetBorrowing.AssetID)
        .where(AssetBorrowing.Status == BorrowingStatus.ACTIVE.value)
        .group_by(AssetBorrowing.AssetID)
        .having(func.count() > 1),
    )
    checks.append(
        CheckResult("borrowings:multiple_active_per_asset", multiple_active == 0, f"count={multiple_active}")
    )

    duplicate_pending = _count(
        db,
        select(AssetBorrowing.EmployeeID, AssetBorrowing.AssetID)
        .where(AssetBorrowing.Status == BorrowingStatus.PENDING.value)
        .group_by(AssetBorrowing.EmployeeID, AssetBorrowing.AssetID)
        .having(func.count() > 1),
    )
    checks.append(
        CheckResult("borrowings:duplicate_pending_pair", duplicate_pending == 0, f"count={duplicate_pending}")
    )

    for model, label in ((AssetBorrowing, "borrowings"), (AssetAudit, "audits"), (ServiceRequest, "service_requests")):
        employee = aliased(Employee)
        asset = aliased(Asset)
        orphans = _count(
            db,
            select(model.EmployeeID)
            .outerjoin(employee, employee.EmployeeID == model.EmployeeID)
            .outerjoin(asset, asset.AssetID == model.AssetID)
            .where((employee.EmployeeID.is_(None)) | (asset.AssetID.is_(None))),
        )
        checks.append(CheckResult(f"{label}:orphan_employee_or_asset", orphans == 0, f"count={orphans}"))

    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_row_counts(engine: Engine) -> None:
    _print_section("Row Counts")
    present = set(inspect(engine).get_table_names())
    with Session(engine) as db:
        for table_name, table in Base.metadata.tables.items():
            if table_name not in present:
                print(f"{table_name}: missing")
                continue
            count = db.execute(select(func.count()).select_from(table)).scalar()
            print(f"{table_name}: {int(count or 0)}")


def _print_index_summary(engine: Engine) -> None:
    _print_section("Index Summary (key tables)")
    inspector = inspect(engine)
    present = set(inspector.get_table_names())
    for table in ["AssetBorrowings", "Employees", "AssetCategories"]:
        if table not in present:
            print(f"{table}: missing")
            continue
        print(f"{table}:")
        for index in inspector.get_indexes(table):
            print(f"  - {index['name']} unique={bool(index.get('unique'))} cols={','.join(index['column_names'])}")


def _print_samples(engine: Engine, sample_size: int) -> None:
    _print_section("Sample Values")
    sample_size = max(1, sample_size)
    with Session(engine) as db:
        rows = db.execute(
            select(AssetBorrowing.BorrowingID, AssetBorrowing.EmployeeID, AssetBorrowing.AssetID, AssetBorrowing.Status)
            .order_by(AssetBorrowing.BorrowingID.desc())
            .limit(sample_size)
        ).all()
        print("AssetBorrowings (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")

        rows = db.execute(
            select(ActivityLog.ActivityID, ActivityLog.EntityType, ActivityLog.Action, ActivityLog.UserID, ActivityLog.CreatedAt)
            .order_by(ActivityLog.ActivityID.desc())
            .limit(sample_size)
        ).all()
        print("ActivityLogs (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")


def main() -> int:
    parser = argparse.ArgumentParser(description="AssetLifecycle DB overview")
    parser.add_argument("--db-url", default=os.environ.get("ASSET_LIFECYCLE_DB_URL", ""))
    parser.add_argument("--samples", type=int, default=5)
    args = parser.parse_args()

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("ASSET_LIFECYCLE_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = _get_engine(db_url)
        # Force a quick connectivity check first.
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    existence = _run_existence_checks(engine)
    _print_results("Table Existence", existence)
    _print_results("Column Checks", _run_column_checks(engine))
    if not all(row.ok for row in existence):
        print("\nSkipping integrity checks and samples: schema is incomplete.")
        return 1

    with Session(engine) as db:
        integrity = run_integrity_checks(db)
    _print_results("Integrity Checks", integrity)
    _print_row_counts(engine)
    _print_index_summary(engine)
    _print_samples(engine, args.samples)
    return 0 if all(row.ok for row in integrity) else 1


if __name__ == "__main__":
    sys.exit(main())
