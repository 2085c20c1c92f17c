from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime

from sqlalchemy.orm import Session

from db.store import count_by, delete, find_all, find_one_by, lock_by_id, require, save, unit_of_work
from models.asset_models import AssetAudit, AssetBorrowing, Employee, Gender, Role, ServiceRequest
from schemas.employees import EmployeeUpdateDto, RegisterEmployeeDto
from services.activity_log import log_activity
from services.errors import AlreadyExistsError, BadInputError, ConflictError, UnauthorizedError
from services.validation import coerce_enum


EMPLOYEE_LOGGER = logging.getLogger("asset_lifecycle.employees")
MIN_PASSWORD_LENGTH = 6


def _password_hash(password: str, salt: str) -> str:
    raw = hashlib.pbkdf2_hmac(
        "sha256",
        (password or "").encode("utf-8"),
        salt.encode("utf-8"),
        120000,
    )
    return raw.hex()


def set_password(employee: Employee, password: str) -> None:
    trimmed = str(password or "").strip()
    if len(trimmed) < MIN_PASSWORD_LENGTH:
        raise BadInputError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    salt = secrets.token_hex(16)
    employee.PasswordSalt = salt
    employee.PasswordHash = _password_hash(trimmed, salt)


def _normalize_email(raw: str | None) -> str:
    return (raw or "").strip().lower()


def serialize_employee(employee: Employee) -> dict:
    return {
        "employeeID": employee.EmployeeID,
        "name": employee.Name,
        "gender": employee.Gender,
        "contactNumber": employee.ContactNumber,
        "address": employee.Address,
        "email": employee.Email,
        "role": employee.Role,
        "createdDate": employee.CreatedDate,
    }


def register_employee(db: Session, payload: RegisterEmployeeDto) -> Employee:
    email = _normalize_email(payload.email)
    role = coerce_enum(Role, payload.role or Role.USER, "role")
    gender = coerce_enum(Gender, payload.gender, "gender")
    with unit_of_work(db):
        if find_one_by(db, Employee, Employee.Email == email):
            EMPLOYEE_LOGGER.warning("Employee registration rejected email=%s reason=duplicate", email)
            raise AlreadyExistsError(f"Employee with email {email} already exists", entity="Employee")
        employee = Employee(
            Name=payload.name.strip(),
            Gender=gender.value,
            ContactNumber=payload.contactNumber,
            Address=payload.address,
            Email=email,
            Role=role.value,
            CreatedDate=datetime.now(),
        )
        set_password(employee, payload.password)
        save(db, employee)
        log_activity(db, "Employee", employee.EmployeeID, "RegisterEmployee", f"role={role.value}", user_id=employee.EmployeeID)
    EMPLOYEE_LOGGER.info("Employee registered employee_id=%s role=%s", employee.EmployeeID, role.value)
    return employee


def get_employee(db: Session, employee_id: int) -> Employee:
    return require(db, Employee, employee_id, "Employee")


def list_employees(db: Session) -> list[Employee]:
    return find_all(db, Employee, order_by=Employee.Name)


def update_employee(
    db: Session,
    employee_id: int,
    payload: EmployeeUpdateDto,
    *,
    actor_id: int | None = None,
) -> Employee:
    email = _normalize_email(payload.email)
    gender = coerce_enum(Gender, payload.gender, "gender")
    with unit_of_work(db):
        employee = lock_by_id(db, Employee, employee_id, "Employee")
        clash = find_one_by(db, Employee, Employee.Email == email, Employee.EmployeeID != employee_id)
        if clash:
            raise AlreadyExistsError(f"Employee with email {email} already exists", entity="Employee")
        employee.Name = payload.name.strip()
        employee.Gender = gender.value
        employee.ContactNumber = payload.contactNumber
        employee.Address = payload.address
        employee.Email = email
        if payload.role is not None:
            employee.Role = coerce_enum(Role, payload.role, "role").value
        if payload.password and payload.password.strip():
            set_password(employee, payload.password)
            EMPLOYEE_LOGGER.info("Password updated employee_id=%s", employee_id)
        log_activity(db, "Employee", employee_id, "UpdateEmployee", None, user_id=actor_id)
    EMPLOYEE_LOGGER.info("Employee updated employee_id=%s", employee_id)
    return employee


def delete_employee(db: Session, employee_id: int, *, actor_id: int | None = None) -> None:
    with unit_of_work(db):
        employee = lock_by_id(db, Employee, employee_id, "Employee")
        references = (
            count_by(db, AssetBorrowing, AssetBorrowing.EmployeeID == employee_id)
            + count_by(db, AssetAudit, AssetAudit.EmployeeID == employee_id)
            + count_by(db, ServiceRequest, ServiceRequest.EmployeeID == employee_id)
        )
        if references:
            EMPLOYEE_LOGGER.warning("Employee delete rejected employee_id=%s references=%s", employee_id, references)
            raise ConflictError(
                f"Employee {employee_id} is referenced by {references} lifecycle records and cannot be deleted.",
                entity="Employee",
                entity_id=employee_id,
                current=f"{references} records",
                expected="0 records",
            )
        delete(db, employee)
        log_activity(db, "Employee", employee_id, "DeleteEmployee", None, user_id=actor_id)
    EMPLOYEE_LOGGER.info("Employee deleted employee_id=%s", employee_id)


def authenticate(db: Session, email: str, password: str) -> Employee:
    employee = find_one_by(db, Employee, Employee.Email == _normalize_email(email))
    if employee is None:
        raise UnauthorizedError("Invalid credentials.", entity="Employee")
    candidate = _password_hash(str(password or "").strip(), employee.PasswordSalt)
    if not hmac.compare_digest(candidate, employee.PasswordHash or ""):
        raise UnauthorizedError("Invalid credentials.", entity="Employee", entity_id=employee.EmployeeID)
    return employee
