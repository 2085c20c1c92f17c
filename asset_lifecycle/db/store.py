from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.inspection import inspect
from sqlalchemy.orm import Session

from services.errors import ConflictError, LifecycleError, NotFoundError, StoreError


STORE_LOGGER = logging.getLogger("asset_lifecycle.store")


def _pk_attribute(model):
    # Mapped attribute, not the Table column, so ORM UPDATEs can evaluate it in-session.
    return getattr(model, inspect(model).primary_key[0].key)


def find_by_id(db: Session, model, identifier: int):
    if identifier is None:
        return None
    return db.get(model, identifier)


def require(db: Session, model, identifier: int, label: str | None = None):
    entity = find_by_id(db, model, identifier)
    if entity is None:
        name = label or model.__name__
        raise NotFoundError(f"{name} not found with ID: {identifier}", entity=name, entity_id=identifier)
    return entity


def find_all(db: Session, model, order_by=None) -> list:
    stmt = select(model).order_by(order_by if order_by is not None else _pk_attribute(model))
    return list(db.execute(stmt).scalars().all())


def find_by(db: Session, model, *criteria, order_by=None) -> list:
    stmt = select(model).where(*criteria).order_by(order_by if order_by is not None else _pk_attribute(model))
    return list(db.execute(stmt).scalars().all())


def find_one_by(db: Session, model, *criteria):
    return db.execute(select(model).where(*criteria).limit(1)).scalars().first()


def count_by(db: Session, model, *criteria) -> int:
    stmt = select(func.count()).select_from(model).where(*criteria)
    return int(db.execute(stmt).scalar() or 0)


def save(db: Session, entity):
    db.add(entity)
    db.flush()
    return entity


def delete(db: Session, entity) -> None:
    db.delete(entity)
    db.flush()


def lock_by_id(db: Session, model, identifier: int, label: str | None = None):
    """Re-read one row inside the current transaction and hold it until commit.

    ``populate_existing`` discards whatever the identity map already holds so the
    caller validates preconditions against committed state, not a stale copy.
    """
    stmt = (
        select(model)
        .where(_pk_attribute(model) == identifier)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    entity = db.execute(stmt).scalars().first()
    if entity is None:
        name = label or model.__name__
        raise NotFoundError(f"{name} not found with ID: {identifier}", entity=name, entity_id=identifier)
    return entity


def compare_and_set(db: Session, model, identifier: int, *, expected: dict[str, Any], values: dict[str, Any]) -> bool:
    """Conditional single-row UPDATE. True only if the row still matched ``expected``."""
    stmt = update(model).where(_pk_attribute(model) == identifier)
    for column_name, value in expected.items():
        stmt = stmt.where(getattr(model, column_name) == value)
    result = db.execute(stmt.values(**values).execution_options(synchronize_session="evaluate"))
    return result.rowcount == 1


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Commit everything done inside the block, or nothing at all."""
    try:
        yield db
        db.commit()
    except LifecycleError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        STORE_LOGGER.warning("Write rejected by constraint error=%s", exc.orig)
        raise ConflictError("Write conflicts with the current state of the data. Refresh and retry.") from exc
    except OperationalError as exc:
        db.rollback()
        STORE_LOGGER.error("Store operation failed", exc_info=True)
        raise StoreError("Store temporarily unavailable. Please retry.") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        STORE_LOGGER.error("Store operation failed", exc_info=True)
        raise StoreError(f"Store failure: {exc.__class__.__name__}") from exc
    except Exception:
        db.rollback()
        raise
