import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass

from db.base import Base
from db.deps import get_asset_db
from db.session import engine_asset
from models.asset_models import Role, ServiceStatus
from schemas.catalog import AssetUpsert, CategoryUpsert
from schemas.employees import AuthLoginRequest, EmployeeUpdateDto, RegisterEmployeeDto
from schemas.workflows import (
    AuditDecisionDto,
    AuditSendDto,
    BorrowingActionDto,
    BorrowRequestDto,
    ServiceRequestCreateDto,
    ServiceStatusUpdateDto,
)
from services import audit_service, borrowing_service, catalog_service, employee_service, service_request_service
from services.activity_log import list_recent_activity
from services.errors import LifecycleError, UnauthorizedError
from services.session_service import create_session, get_session, remove_session
from services.validation import Actor, coerce_enum

logging.basicConfig(level=(os.environ.get("LOG_LEVEL") or "INFO").upper())

API_LOGGER = logging.getLogger("asset_lifecycle.api")
AUTH_LOGGER = logging.getLogger("asset_lifecycle.auth")


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def _env_flag(name: str, default: str = "false") -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


@asynccontextmanager
async def lifespan(_: FastAPI):
    if _env_flag("ASSET_LIFECYCLE_CREATE_SCHEMA"):
        Base.metadata.create_all(bind=engine_asset)
        API_LOGGER.info("Schema ensured on startup")
    yield


app = FastAPI(title="Asset Lifecycle", lifespan=lifespan)

_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5173,http://localhost:5173",
)
_CORS_ALLOW_CREDENTIALS = _env_flag("CORS_ALLOW_CREDENTIALS", "true")
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials; force safe behavior.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)
_APP_SESSION_SECRET = (os.environ.get("SESSION_SIGNING_SECRET") or "").strip()
if len(_APP_SESSION_SECRET) >= 32:
    app.add_middleware(
        SessionMiddleware,
        secret_key=_APP_SESSION_SECRET,
        session_cookie="asset_lifecycle_session",
        same_site="lax",
        https_only=False,
    )


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    API_LOGGER.error("Store failure path=%s", request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Store temporarily unavailable. Please retry.", "kind": "StoreError"},
    )


# Identity


def _get_active_session(request: Request, session_token: str | None) -> dict | None:
    session_from_token = get_session(session_token)
    if session_from_token:
        return dict(session_from_token)
    session_from_cookie = request.session.get("user")
    if isinstance(session_from_cookie, dict) and get_session(session_from_cookie.get("token")):
        return dict(session_from_cookie)
    return None


def _require_session_or_401(request: Request, session_token: str | None) -> dict:
    session = _get_active_session(request, session_token)
    if not session:
        raise HTTPException(status_code=401, detail="Not logged in.")
    return session


def _require_admin_session_or_403(request: Request, session_token: str | None) -> dict:
    session = _require_session_or_401(request, session_token)
    if str(session.get("role") or "").strip() != Role.ADMIN.value:
        raise HTTPException(status_code=403, detail="Admin role required.")
    return session


def _actor(session: dict) -> Actor:
    return Actor(employee_id=int(session.get("employeeID") or 0), role=coerce_enum(Role, session.get("role"), "role"))


def _require_self_or_admin(actor: Actor, employee_id: int) -> None:
    if not actor.is_admin and actor.employee_id != employee_id:
        raise HTTPException(status_code=403, detail="You can only access your own records.")


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_asset_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


# Auth


@app.post("/api/auth/register", status_code=201)
def auth_register(
    request: Request,
    payload: RegisterEmployeeDto,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    # Only an admin may hand out the ADMIN role.
    if payload.role == Role.ADMIN:
        _require_admin_session_or_403(request, x_session_token)
    employee = employee_service.register_employee(db, payload)
    return employee_service.serialize_employee(employee)


@app.post("/api/auth/login")
def auth_login(payload: AuthLoginRequest, request: Request, db: Session = Depends(get_asset_db)):
    try:
        employee = employee_service.authenticate(db, payload.email, payload.password)
    except UnauthorizedError:
        AUTH_LOGGER.warning("Login failed email=%s", payload.email)
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    session_payload = {
        "employeeID": employee.EmployeeID,
        "name": employee.Name,
        "email": employee.Email,
        "role": employee.Role,
    }
    token = create_session(session_payload)
    request.session["user"] = dict(session_payload, token=token)
    AUTH_LOGGER.info("Login success user_id=%s role=%s", employee.EmployeeID, employee.Role)
    return {"sessionToken": token, "user": session_payload}


@app.post("/api/auth/logout")
def auth_logout(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    cookie_user = request.session.get("user")
    if isinstance(cookie_user, dict):
        remove_session(cookie_user.get("token"))
    request.session.clear()
    remove_session(x_session_token)
    return {"ok": True}


@app.get("/api/auth/me")
def auth_me(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    session = _require_session_or_401(request, x_session_token)
    session.pop("token", None)
    return {"user": session}


# Employees


@app.get("/api/employees")
def get_employees(
    request: Request,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_admin_session_or_403(request, x_session_token)
    return [employee_service.serialize_employee(item) for item in employee_service.list_employees(db)]


@app.get("/api/employees/{employee_id}")
def get_employee(
    request: Request,
    employee_id: int,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_session_or_401(request, x_session_token))
    _require_self_or_admin(actor, employee_id)
    return employee_service.serialize_employee(employee_service.get_employee(db, employee_id))


@app.put("/api/employees/{employee_id}")
def update_employee(
    request: Request,
    employee_id: int,
    payload: EmployeeUpdateDto,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_session_or_401(request, x_session_token))
    _require_self_or_admin(actor, employee_id)
    if not actor.is_admin:
        payload.role = None
    employee = employee_service.update_employee(db, employee_id, payload, actor_id=actor.employee_id)
    return employee_service.serialize_employee(employee)


@app.delete("/api/employees/{employee_id}")
def delete_employee(
    request: Request,
    employee_id: int,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_admin_session_or_403(request, x_session_token))
    employee_service.delete_employee(db, employee_id, actor_id=actor.employee_id)
    return {"message": "Deleted"}


# Categories


@app.get("/api/categories")
def get_categories(
    request: Request,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return [catalog_service.serialize_category(item) for item in catalog_service.list_categories(db)]


@app.get("/api/categories/by-name/{category_name}")
def get_category_by_name(
    request: Request,
    category_name: str,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return catalog_service.serialize_category(catalog_service.get_category_by_name(db, category_name))


@app.get("/api/categories/{category_id}")
def get_category(
    request: Request,
    category_id: int,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return catalog_service.serialize_category(catalog_service.get_category(db, category_id))


@app.post("/api/categories", status_code=201)
def create_category(
    request: Request,
    payload: CategoryUpsert,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_admin_session_or_403(request, x_session_token))
    category = catalog_service.create_category(db, payload.categoryName, actor_id=actor.employee_id)
    return catalog_service.serialize_category(category)


@app.put("/api/categories/{category_id}")
def update_category(
    request: Request,
    category_id: int,
    payload: CategoryUpsert,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_admin_session_or_403(request, x_session_token))
    category = catalog_service.update_category(db, category_id, payload.categoryName, actor_id=actor.employee_id)
    return catalog_service.serialize_category(category)


@app.delete("/api/categories/{category_id}")
def delete_category(
    request: Request,
    category_id: int,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_admin_session_or_403(request, x_session_token))
    catalog_service.delete_category(db, category_id, actor_id=actor.employee_id)
    return {"message": "Deleted"}


# Assets


@app.get("/api/assets")
def get_assets(
    request: Request,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return [catalog_service.serialize_asset(item) for item in catalog_service.list_assets(db)]


@app.get("/api/assets/category/{category_name}")
def get_assets_by_category(
    request: Request,
    category_name: str,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return [catalog_service.serialize_asset(item) for item in catalog_service.list_assets_by_category(db, category_name)]


@app.get("/api/assets/assigned/{employee_id}")
def get_assigned_assets(
    request: Request,
    employee_id: int,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_session_or_401(request, x_session_token))
    _require_self_or_admin(actor, employee_id)
    return [catalog_service.serialize_asset(item) for item in catalog_service.list_assigned_assets(db, employee_id)]


@app.get("/api/assets/{asset_id}")
def get_asset(
    request: Request,
    asset_id: int,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return catalog_service.serialize_asset(catalog_service.get_asset(db, asset_id))


@app.post("/api/assets", status_code=201)
def create_asset(
    request: Request,
    payload: AssetUpsert,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_admin_session_or_403(request, x_session_token))
    return catalog_service.serialize_asset(catalog_service.create_asset(db, payload, actor_id=actor.employee_id))


@app.put("/api/assets/{asset_id}")
def update_asset(
    request: Request,
    asset_id: int,
    payload: AssetUpsert,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_admin_session_or_403(request, x_session_token))
    return catalog_service.serialize_asset(catalog_service.update_asset(db, asset_id, payload, actor_id=actor.employee_id))


@app.delete("/api/assets/{asset_id}")
def delete_asset(
    request: Request,
    asset_id: int,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_admin_session_or_403(request, x_session_token))
    catalog_service.delete_asset(db, asset_id, actor_id=actor.employee_id)
    return {"message": "Deleted"}


# Borrowings


@app.post("/api/borrowings", status_code=201)
def request_borrow(
    request: Request,
    payload: BorrowRequestDto,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_session_or_401(request, x_session_token))
    # Employees always borrow for themselves; admins may file on someone's behalf.
    employee_id = payload.employeeID if actor.is_admin and payload.employeeID else actor.employee_id
    borrowing = borrowing_service.request_borrow(db, employee_id, payload.assetID, actor_id=actor.employee_id)
    return borrowing_service.serialize_borrowing(borrowing)


@app.post("/api/borrowings/{borrowing_id}/action")
def process_borrowing_action(
    request: Request,
    borrowing_id: int,
    payload: BorrowingActionDto,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_admin_session_or_403(request, x_session_token))
    borrowing = borrowing_service.process_borrowing_action(db, borrowing_id, payload.action, actor_id=actor.employee_id)
    return borrowing_service.serialize_borrowing(borrowing)


@app.post("/api/borrowings/{borrowing_id}/return")
def return_asset(
    request: Request,
    borrowing_id: int,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_session_or_401(request, x_session_token))
    _require_self_or_admin(actor, borrowing_service.get_borrowing(db, borrowing_id).EmployeeID)
    borrowing = borrowing_service.return_asset(db, borrowing_id, actor_id=actor.employee_id)
    return borrowing_service.serialize_borrowing(borrowing)


@app.get("/api/borrowings/employee/{employee_id}")
def get_borrowings_by_employee(
    request: Request,
    employee_id: int,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_session_or_401(request, x_session_token))
    _require_self_or_admin(actor, employee_id)
    rows = borrowing_service.list_borrowings_by_employee(db, employee_id)
    return [borrowing_service.serialize_borrowing(row) for row in rows]


@app.get("/api/borrowings/{status}")
def get_borrowings_by_status(
    request: Request,
    status: str,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_admin_session_or_403(request, x_session_token)
    rows = borrowing_service.list_borrowings_by_status(db, status)
    return [borrowing_service.serialize_borrowing(row) for row in rows]


# Audits


@app.post("/api/audits", status_code=201)
def send_audit(
    request: Request,
    payload: AuditSendDto,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_admin_session_or_403(request, x_session_token))
    audit = audit_service.send_audit(db, payload.employeeID, payload.assetID, actor_id=actor.employee_id)
    return audit_service.serialize_audit(audit)


@app.post("/api/audits/{audit_id}/decision")
def decide_audit(
    request: Request,
    audit_id: int,
    payload: AuditDecisionDto,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_session_or_401(request, x_session_token))
    audit = audit_service.decide_audit(db, audit_id, actor.employee_id, payload.action)
    return audit_service.serialize_audit(audit)


@app.get("/api/audits")
def get_audits(
    request: Request,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_admin_session_or_403(request, x_session_token)
    return [audit_service.serialize_audit(row) for row in audit_service.list_audits(db)]


@app.get("/api/audits/employee/{employee_id}")
def get_audits_by_employee(
    request: Request,
    employee_id: int,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_session_or_401(request, x_session_token))
    _require_self_or_admin(actor, employee_id)
    return [audit_service.serialize_audit(row) for row in audit_service.list_audits_by_employee(db, employee_id)]


@app.get("/api/audits/{audit_id}")
def get_audit(
    request: Request,
    audit_id: int,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_admin_session_or_403(request, x_session_token)
    return audit_service.serialize_audit(audit_service.get_audit(db, audit_id))


# Service requests


@app.post("/api/service-requests", status_code=201)
def create_service_request(
    request: Request,
    payload: ServiceRequestCreateDto,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_session_or_401(request, x_session_token))
    employee_id = payload.employeeID if actor.is_admin and payload.employeeID else actor.employee_id
    service_request = service_request_service.create_service_request(
        db,
        employee_id,
        payload.assetID,
        payload.issueType,
        payload.description,
        actor_id=actor.employee_id,
    )
    return service_request_service.serialize_service_request(service_request)


@app.put("/api/service-requests/{service_request_id}/status")
def update_service_request_status(
    request: Request,
    service_request_id: int,
    payload: ServiceStatusUpdateDto,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_admin_session_or_403(request, x_session_token))
    service_request = service_request_service.update_service_request_status(
        db, service_request_id, payload.status, actor_id=actor.employee_id
    )
    return service_request_service.serialize_service_request(service_request)


@app.get("/api/service-requests")
def get_service_requests(
    request: Request,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_admin_session_or_403(request, x_session_token)
    rows = service_request_service.list_service_requests(db)
    return [service_request_service.serialize_service_request(row) for row in rows]


@app.get("/api/service-requests/employee/{employee_id}")
def get_service_requests_by_employee(
    request: Request,
    employee_id: int,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_session_or_401(request, x_session_token))
    _require_self_or_admin(actor, employee_id)
    rows = service_request_service.list_service_requests_by_employee(db, employee_id)
    return [service_request_service.serialize_service_request(row) for row in rows]


@app.get("/api/service-requests/status/{status}")
def get_service_requests_by_status(
    request: Request,
    status: ServiceStatus,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_admin_session_or_403(request, x_session_token)
    rows = service_request_service.list_service_requests_by_status(db, status)
    return [service_request_service.serialize_service_request(row) for row in rows]


@app.get("/api/service-requests/{service_request_id}")
def get_service_request(
    request: Request,
    service_request_id: int,
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _actor(_require_session_or_401(request, x_session_token))
    service_request = service_request_service.get_service_request(db, service_request_id)
    _require_self_or_admin(actor, service_request.EmployeeID)
    return service_request_service.serialize_service_request(service_request)


# Activity trail


@app.get("/api/activity")
def get_activity(
    request: Request,
    limit: int = Query(100, ge=1, le=500),
    entity_type: str | None = Query(None, alias="entityType"),
    db: Session = Depends(get_asset_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_admin_session_or_403(request, x_session_token)
    return list_recent_activity(db, limit=limit, entity_type=entity_type)
