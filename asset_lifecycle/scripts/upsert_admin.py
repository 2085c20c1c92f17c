#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.base import Base
from db.store import find_one_by, unit_of_work
from models.asset_models import Employee, Gender, Role
from schemas.employees import RegisterEmployeeDto
from services import employee_service


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create or promote one ADMIN employee directly from terminal.",
    )
    parser.add_argument("--email", required=True, help="Login email of the admin")
    parser.add_argument("--name", default="Administrator", help="Display name used when the employee is created")
    parser.add_argument(
        "--password",
        default=None,
        help="Password to set. Required when creating; omit to keep the existing password.",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("ASSET_LIFECYCLE_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to ASSET_LIFECYCLE_DB_URL env var.",
    )
    parser.add_argument("--create-schema", action="store_true", help="Create missing tables first.")
    return parser


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(f"--{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors())


def upsert_admin(db: Session, payload: RegisterEmployeeDto, password: str | None) -> tuple[Employee, str]:
    """Promote the employee with ``payload.email`` to ADMIN, creating them if needed."""
    existing = find_one_by(db, Employee, Employee.Email == payload.email.strip().lower())
    if existing is None:
        return employee_service.register_employee(db, payload), "created"
    with unit_of_work(db):
        existing.Role = Role.ADMIN.value
        if password is not None:
            employee_service.set_password(existing, password)
    return existing, "updated"


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.db_url:
        parser.error("Missing DB URL. Set ASSET_LIFECYCLE_DB_URL or pass --db-url.")
    if args.password is not None and len(args.password.strip()) < employee_service.MIN_PASSWORD_LENGTH:
        parser.error(f"--password must be at least {employee_service.MIN_PASSWORD_LENGTH} characters.")

    try:
        payload = RegisterEmployeeDto(
            name=args.name,
            gender=Gender.OTHER,
            contactNumber="-",
            address="-",
            email=args.email.strip(),
            # Placeholder only satisfies the schema; an existing admin keeps their password.
            password=args.password or "-" * employee_service.MIN_PASSWORD_LENGTH,
            role=Role.ADMIN,
        )
    except ValidationError as exc:
        parser.error(_validation_message(exc))

    engine = create_engine(args.db_url, pool_pre_ping=True, future=True)
    if args.create_schema:
        Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)

    with SessionLocal() as db:
        if args.password is None and find_one_by(db, Employee, Employee.Email == payload.email.lower()) is None:
            parser.error("--password is required when creating a new admin.")
        employee, action = upsert_admin(db, payload, args.password)
    engine.dispose()

    print(
        f"OK {action} employee_id={employee.EmployeeID} email={employee.Email} role={employee.Role} "
        f"password_changed={args.password is not None}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
