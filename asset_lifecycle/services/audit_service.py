from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from db.store import lock_by_id, require, save, unit_of_work
from models.asset_models import Asset, AssetAudit, AuditAction, AuditStatus, Employee
from services.activity_log import log_activity
from services.errors import ConflictError, UnauthorizedError
from services.validation import coerce_enum


AUDIT_LOGGER = logging.getLogger("asset_lifecycle.audit")

AUDIT_DECISIONS = {
    AuditAction.VERIFY: AuditStatus.VERIFIED,
    AuditAction.REJECT: AuditStatus.REJECTED,
}


def serialize_audit(audit: AssetAudit) -> dict:
    return {
        "auditID": audit.AuditID,
        "employeeID": audit.EmployeeID,
        "assetID": audit.AssetID,
        "status": audit.Status,
        "requestedAt": audit.RequestedAt,
        "updatedAt": audit.UpdatedAt,
        "employeeName": audit.Employee.Name if audit.Employee else None,
        "assetName": audit.Asset.AssetName if audit.Asset else None,
    }


def send_audit(db: Session, employee_id: int, asset_id: int, *, actor_id: int | None = None) -> AssetAudit:
    # Unlike borrow requests, repeated PENDING audits for one pair are allowed.
    with unit_of_work(db):
        employee = require(db, Employee, employee_id, "Employee")
        asset = require(db, Asset, asset_id, "Asset")
        audit = save(
            db,
            AssetAudit(
                Employee=employee,
                Asset=asset,
                Status=AuditStatus.PENDING.value,
                RequestedAt=datetime.now(),
            ),
        )
        log_activity(db, "AssetAudit", audit.AuditID, "SendAudit", f"employee={employee_id} asset={asset_id}", user_id=actor_id)
    AUDIT_LOGGER.info("Audit sent audit_id=%s employee_id=%s asset_id=%s", audit.AuditID, employee_id, asset_id)
    return audit


def decide_audit(db: Session, audit_id: int, caller_employee_id: int, action: AuditAction | str) -> AssetAudit:
    with unit_of_work(db):
        audit = lock_by_id(db, AssetAudit, audit_id, "Audit")

        if audit.EmployeeID != caller_employee_id:
            AUDIT_LOGGER.warning(
                "Audit decision rejected audit_id=%s caller=%s owner=%s",
                audit_id,
                caller_employee_id,
                audit.EmployeeID,
            )
            raise UnauthorizedError(
                "You can only make decisions on your own audits",
                entity="AssetAudit",
                entity_id=audit_id,
            )

        if audit.Status != AuditStatus.PENDING.value:
            AUDIT_LOGGER.warning("Audit decision rejected audit_id=%s status=%s", audit_id, audit.Status)
            raise ConflictError(
                "Audit decision can only be made on PENDING audits",
                entity="AssetAudit",
                entity_id=audit_id,
                current=audit.Status,
                expected=AuditStatus.PENDING,
            )

        decision = coerce_enum(AuditAction, action, "action")
        audit.Status = AUDIT_DECISIONS[decision].value
        audit.UpdatedAt = datetime.now()
        log_activity(db, "AssetAudit", audit_id, f"Audit{decision.value.title()}", None, user_id=caller_employee_id)
    AUDIT_LOGGER.info("Audit decided audit_id=%s employee_id=%s status=%s", audit_id, caller_employee_id, audit.Status)
    return audit


def _audits_query():
    return (
        select(AssetAudit)
        .options(selectinload(AssetAudit.Employee), selectinload(AssetAudit.Asset))
        .order_by(AssetAudit.AuditID)
    )


def list_audits_by_employee(db: Session, employee_id: int) -> list[AssetAudit]:
    require(db, Employee, employee_id, "Employee")
    return list(db.execute(_audits_query().where(AssetAudit.EmployeeID == employee_id)).scalars().all())


def list_audits(db: Session) -> list[AssetAudit]:
    return list(db.execute(_audits_query()).scalars().all())


def get_audit(db: Session, audit_id: int) -> AssetAudit:
    return require(db, AssetAudit, audit_id, "Audit")
