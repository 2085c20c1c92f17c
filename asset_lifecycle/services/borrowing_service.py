from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from db.store import compare_and_set, find_one_by, lock_by_id, require, save, unit_of_work
from models.asset_models import (
    Asset,
    AssetBorrowing,
    AssetStatus,
    BorrowingAction,
    BorrowingStatus,
    Employee,
)
from services.activity_log import log_activity
from services.errors import ConflictError
from services.validation import coerce_enum


BORROWING_LOGGER = logging.getLogger("asset_lifecycle.borrowing")

# ACTIVE leaves only through return_asset; REJECTED and RETURNED are terminal.
BORROWING_TRANSITIONS = {
    BorrowingStatus.PENDING: {BorrowingStatus.ACTIVE, BorrowingStatus.REJECTED},
    BorrowingStatus.ACTIVE: {BorrowingStatus.RETURNED},
    BorrowingStatus.REJECTED: set(),
    BorrowingStatus.RETURNED: set(),
}


def serialize_borrowing(borrowing: AssetBorrowing) -> dict:
    employee = borrowing.Employee
    asset = borrowing.Asset
    return {
        "borrowingID": borrowing.BorrowingID,
        "employeeID": borrowing.EmployeeID,
        "assetID": borrowing.AssetID,
        "status": borrowing.Status,
        "borrowedAt": borrowing.BorrowedAt,
        "returnedAt": borrowing.ReturnedAt,
        "employee": {
            "employeeID": employee.EmployeeID,
            "name": employee.Name,
            "email": employee.Email,
        } if employee else None,
        "asset": {
            "assetID": asset.AssetID,
            "assetName": asset.AssetName,
            "status": asset.Status,
        } if asset else None,
    }


def _ensure_transition(borrowing: AssetBorrowing, target: BorrowingStatus, message: str) -> None:
    current = BorrowingStatus(borrowing.Status)
    if target not in BORROWING_TRANSITIONS[current]:
        BORROWING_LOGGER.warning(
            "Borrowing transition rejected borrowing_id=%s current=%s target=%s",
            borrowing.BorrowingID,
            current.value,
            target.value,
        )
        raise ConflictError(
            message,
            entity="AssetBorrowing",
            entity_id=borrowing.BorrowingID,
            current=current,
            expected={status for status, targets in BORROWING_TRANSITIONS.items() if target in targets},
        )


def _asset_already_borrowed(asset: Asset, message: str) -> ConflictError:
    return ConflictError(
        message,
        entity="Asset",
        entity_id=asset.AssetID,
        current=AssetStatus.BORROWED,
        expected=AssetStatus.AVAILABLE,
    )


def request_borrow(db: Session, employee_id: int, asset_id: int, *, actor_id: int | None = None) -> AssetBorrowing:
    with unit_of_work(db):
        employee = require(db, Employee, employee_id, "Employee")
        asset = lock_by_id(db, Asset, asset_id, "Asset")

        if asset.Status == AssetStatus.BORROWED.value:
            BORROWING_LOGGER.warning("Borrow request rejected asset_id=%s reason=already_borrowed", asset_id)
            raise _asset_already_borrowed(
                asset,
                f"Asset '{asset.AssetName}' is already borrowed and not available for request.",
            )

        existing = find_one_by(
            db,
            AssetBorrowing,
            AssetBorrowing.EmployeeID == employee_id,
            AssetBorrowing.AssetID == asset_id,
            AssetBorrowing.Status == BorrowingStatus.PENDING.value,
        )
        if existing:
            BORROWING_LOGGER.warning(
                "Borrow request rejected employee_id=%s asset_id=%s reason=duplicate_pending borrowing_id=%s",
                employee_id,
                asset_id,
                existing.BorrowingID,
            )
            raise ConflictError(
                f"You already have a pending request for asset '{asset.AssetName}'. Please wait for approval.",
                entity="AssetBorrowing",
                entity_id=existing.BorrowingID,
                current=BorrowingStatus.PENDING,
            )

        # BorrowedAt records the request time here; approval overwrites it.
        borrowing = save(
            db,
            AssetBorrowing(
                Employee=employee,
                Asset=asset,
                Status=BorrowingStatus.PENDING.value,
                BorrowedAt=datetime.now(),
            ),
        )
        log_activity(
            db,
            "AssetBorrowing",
            borrowing.BorrowingID,
            "RequestBorrow",
            f"employee={employee_id} asset={asset_id}",
            user_id=actor_id if actor_id is not None else employee_id,
        )
    BORROWING_LOGGER.info(
        "Borrow request created borrowing_id=%s employee_id=%s asset_id=%s",
        borrowing.BorrowingID,
        employee_id,
        asset_id,
    )
    return borrowing


def process_borrowing_action(
    db: Session,
    borrowing_id: int,
    action: BorrowingAction | str,
    *,
    actor_id: int | None = None,
) -> AssetBorrowing:
    decision = coerce_enum(BorrowingAction, action, "action")
    with unit_of_work(db):
        borrowing = lock_by_id(db, AssetBorrowing, borrowing_id, "Borrowing record")
        if decision == BorrowingAction.REJECT:
            _ensure_transition(borrowing, BorrowingStatus.REJECTED, "Only pending borrow requests can be processed")
            borrowing.Status = BorrowingStatus.REJECTED.value
            log_activity(db, "AssetBorrowing", borrowing_id, "RejectBorrow", None, user_id=actor_id)
        else:
            _ensure_transition(borrowing, BorrowingStatus.ACTIVE, "Only pending borrow requests can be processed")
            _activate_borrowing(db, borrowing, actor_id)

    BORROWING_LOGGER.info(
        "Borrowing action processed borrowing_id=%s action=%s status=%s",
        borrowing_id,
        decision.value,
        borrowing.Status,
    )
    return borrowing


def _activate_borrowing(db: Session, borrowing: AssetBorrowing, actor_id: int | None) -> None:
    asset = lock_by_id(db, Asset, borrowing.AssetID, "Asset")
    if asset.Status == AssetStatus.BORROWED.value:
        BORROWING_LOGGER.warning(
            "Borrowing approval rejected borrowing_id=%s asset_id=%s reason=already_borrowed",
            borrowing.BorrowingID,
            asset.AssetID,
        )
        raise _asset_already_borrowed(
            asset,
            f"Asset '{asset.AssetName}' is already borrowed by another user. Please reject this request.",
        )

    now = datetime.now()
    # Re-validated in the UPDATE itself: only one approver can flip the flag.
    if not compare_and_set(
        db,
        Asset,
        asset.AssetID,
        expected={"Status": AssetStatus.AVAILABLE.value},
        values={"Status": AssetStatus.BORROWED.value, "UpdatedDate": now},
    ):
        BORROWING_LOGGER.warning(
            "Borrowing approval lost race borrowing_id=%s asset_id=%s", borrowing.BorrowingID, asset.AssetID
        )
        raise _asset_already_borrowed(
            asset,
            f"Asset '{asset.AssetName}' was borrowed by another request while this one was being approved.",
        )
    if not compare_and_set(
        db,
        AssetBorrowing,
        borrowing.BorrowingID,
        expected={"Status": BorrowingStatus.PENDING.value},
        values={"Status": BorrowingStatus.ACTIVE.value, "BorrowedAt": now},
    ):
        raise ConflictError(
            "Borrow request was processed concurrently. Refresh and retry.",
            entity="AssetBorrowing",
            entity_id=borrowing.BorrowingID,
            expected=BorrowingStatus.PENDING,
        )
    log_activity(
        db,
        "AssetBorrowing",
        borrowing.BorrowingID,
        "ApproveBorrow",
        f"asset={asset.AssetID} status={AssetStatus.BORROWED.value}",
        user_id=actor_id,
    )


def return_asset(db: Session, borrowing_id: int, *, actor_id: int | None = None) -> AssetBorrowing:
    with unit_of_work(db):
        borrowing = lock_by_id(db, AssetBorrowing, borrowing_id, "Borrowing record")
        _ensure_transition(borrowing, BorrowingStatus.RETURNED, "Asset can only be returned when status is ACTIVE")

        asset = lock_by_id(db, Asset, borrowing.AssetID, "Asset")
        now = datetime.now()
        borrowing.Status = BorrowingStatus.RETURNED.value
        borrowing.ReturnedAt = now
        asset.Status = AssetStatus.AVAILABLE.value
        asset.UpdatedDate = now
        log_activity(
            db,
            "AssetBorrowing",
            borrowing_id,
            "ReturnAsset",
            f"asset={asset.AssetID} status={AssetStatus.AVAILABLE.value}",
            user_id=actor_id if actor_id is not None else borrowing.EmployeeID,
        )
    BORROWING_LOGGER.info("Asset returned borrowing_id=%s asset_id=%s", borrowing_id, borrowing.AssetID)
    return borrowing


def get_borrowing(db: Session, borrowing_id: int) -> AssetBorrowing:
    return require(db, AssetBorrowing, borrowing_id, "Borrowing record")


def _borrowings_query():
    return (
        select(AssetBorrowing)
        .options(selectinload(AssetBorrowing.Employee), selectinload(AssetBorrowing.Asset))
        .order_by(AssetBorrowing.BorrowingID)
    )


def list_borrowings_by_employee(db: Session, employee_id: int) -> list[AssetBorrowing]:
    require(db, Employee, employee_id, "Employee")
    stmt = _borrowings_query().where(AssetBorrowing.EmployeeID == employee_id)
    return list(db.execute(stmt).scalars().all())


def list_borrowings_by_status(db: Session, status: BorrowingStatus | str) -> list[AssetBorrowing]:
    wanted = coerce_enum(BorrowingStatus, status, "status")
    stmt = _borrowings_query().where(AssetBorrowing.Status == wanted.value)
    return list(db.execute(stmt).scalars().all())


def list_active_borrowings(db: Session) -> list[AssetBorrowing]:
    return list_borrowings_by_status(db, BorrowingStatus.ACTIVE)


def list_pending_borrowings(db: Session) -> list[AssetBorrowing]:
    return list_borrowings_by_status(db, BorrowingStatus.PENDING)


def list_rejected_borrowings(db: Session) -> list[AssetBorrowing]:
    return list_borrowings_by_status(db, BorrowingStatus.REJECTED)


def list_returned_borrowings(db: Session) -> list[AssetBorrowing]:
    return list_borrowings_by_status(db, BorrowingStatus.RETURNED)


def find_status_mismatches(db: Session) -> list[dict]:
    """Assets whose stored status disagrees with their ACTIVE borrowings.

    An asset is consistent when it is Borrowed with exactly one ACTIVE borrowing,
    or Available with none.
    """
    active_counts = dict(
        db.execute(
            select(AssetBorrowing.AssetID, func.count(AssetBorrowing.BorrowingID))
            .where(AssetBorrowing.Status == BorrowingStatus.ACTIVE.value)
            .group_by(AssetBorrowing.AssetID)
        ).all()
    )
    mismatches = []
    for asset_id, status in db.execute(select(Asset.AssetID, Asset.Status).order_by(Asset.AssetID)).all():
        active = int(active_counts.get(asset_id, 0))
        expected_active = 1 if status == AssetStatus.BORROWED.value else 0
        if active != expected_active:
            mismatches.append({"assetID": asset_id, "status": status, "activeBorrowings": active})
    return mismatches
