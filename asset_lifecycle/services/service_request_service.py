from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from db.store import count_by, lock_by_id, require, save, unit_of_work
from models.asset_models import (
    Asset,
    AssetBorrowing,
    BorrowingStatus,
    Employee,
    IssueType,
    ServiceRequest,
    ServiceStatus,
)
from services.activity_log import log_activity
from services.errors import ConflictError
from services.validation import coerce_enum, require_text


SERVICE_LOGGER = logging.getLogger("asset_lifecycle.service")

SERVICE_STATUS_ORDER = [ServiceStatus.PENDING, ServiceStatus.TRANSIT, ServiceStatus.COMPLETED]


def serialize_service_request(service_request: ServiceRequest) -> dict:
    return {
        "serviceRequestID": service_request.ServiceRequestID,
        "employeeID": service_request.EmployeeID,
        "assetID": service_request.AssetID,
        "issueType": service_request.IssueType,
        "description": service_request.Description,
        "status": service_request.Status,
        "requestedAt": service_request.RequestedAt,
        "employeeName": service_request.Employee.Name if service_request.Employee else None,
        "assetName": service_request.Asset.AssetName if service_request.Asset else None,
    }


def create_service_request(
    db: Session,
    employee_id: int,
    asset_id: int,
    issue_type: IssueType | str,
    description: str,
    *,
    actor_id: int | None = None,
) -> ServiceRequest:
    issue = coerce_enum(IssueType, issue_type, "issueType")
    details = require_text(description, "description", 1000)
    with unit_of_work(db):
        employee = require(db, Employee, employee_id, "Employee")
        # Holding the asset row keeps a concurrent return from slipping in between.
        asset = lock_by_id(db, Asset, asset_id, "Asset")
        holds_asset = count_by(
            db,
            AssetBorrowing,
            AssetBorrowing.EmployeeID == employee_id,
            AssetBorrowing.AssetID == asset_id,
            AssetBorrowing.Status == BorrowingStatus.ACTIVE.value,
        ) > 0
        if not holds_asset:
            SERVICE_LOGGER.warning(
                "Service request rejected employee_id=%s asset_id=%s reason=not_holder", employee_id, asset_id
            )
            raise ConflictError(
                "You can only create a service request for an asset you currently have.",
                entity="Asset",
                entity_id=asset_id,
                expected=f"ACTIVE borrowing by employee {employee_id}",
            )
        service_request = save(
            db,
            ServiceRequest(
                Employee=employee,
                Asset=asset,
                IssueType=issue.value,
                Description=details,
                Status=ServiceStatus.PENDING.value,
                RequestedAt=datetime.now(),
            ),
        )
        log_activity(
            db,
            "ServiceRequest",
            service_request.ServiceRequestID,
            "CreateServiceRequest",
            f"asset={asset_id} issue={issue.value}",
            user_id=actor_id if actor_id is not None else employee_id,
        )
    SERVICE_LOGGER.info(
        "Service request created service_request_id=%s employee_id=%s asset_id=%s issue=%s",
        service_request.ServiceRequestID,
        employee_id,
        asset_id,
        issue.value,
    )
    return service_request


def update_service_request_status(
    db: Session,
    service_request_id: int,
    new_status: ServiceStatus | str,
    *,
    actor_id: int | None = None,
) -> ServiceRequest:
    """Overwrite the status. Skipping ahead or moving backward is allowed."""
    target = coerce_enum(ServiceStatus, new_status, "status")
    with unit_of_work(db):
        service_request = lock_by_id(db, ServiceRequest, service_request_id, "Service Request")
        previous = ServiceStatus(service_request.Status)
        if SERVICE_STATUS_ORDER.index(target) < SERVICE_STATUS_ORDER.index(previous):
            SERVICE_LOGGER.warning(
                "Service request status moved backward service_request_id=%s from=%s to=%s",
                service_request_id,
                previous.value,
                target.value,
            )
        service_request.Status = target.value
        log_activity(
            db,
            "ServiceRequest",
            service_request_id,
            "UpdateServiceStatus",
            f"{previous.value} -> {target.value}",
            user_id=actor_id,
        )
    SERVICE_LOGGER.info(
        "Service request status updated service_request_id=%s status=%s", service_request_id, target.value
    )
    return service_request


def _service_requests_query():
    return (
        select(ServiceRequest)
        .options(selectinload(ServiceRequest.Employee), selectinload(ServiceRequest.Asset))
        .order_by(ServiceRequest.ServiceRequestID)
    )


def get_service_request(db: Session, service_request_id: int) -> ServiceRequest:
    return require(db, ServiceRequest, service_request_id, "Service Request")


def list_service_requests_by_employee(db: Session, employee_id: int) -> list[ServiceRequest]:
    stmt = _service_requests_query().where(ServiceRequest.EmployeeID == employee_id)
    return list(db.execute(stmt).scalars().all())


def list_service_requests(db: Session) -> list[ServiceRequest]:
    return list(db.execute(_service_requests_query()).scalars().all())


def list_service_requests_by_status(db: Session, status: ServiceStatus | str) -> list[ServiceRequest]:
    wanted = coerce_enum(ServiceStatus, status, "status")
    stmt = _service_requests_query().where(ServiceRequest.Status == wanted.value)
    return list(db.execute(stmt).scalars().all())
