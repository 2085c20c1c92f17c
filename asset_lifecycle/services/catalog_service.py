from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from db.store import count_by, delete, find_all, find_by, find_one_by, lock_by_id, require, save, unit_of_work
from models.asset_models import (
    Asset,
    AssetAudit,
    AssetBorrowing,
    AssetCategory,
    AssetStatus,
    BorrowingStatus,
    Employee,
    ServiceRequest,
)
from schemas.catalog import AssetUpsert
from services.activity_log import log_activity
from services.errors import AlreadyExistsError, BadInputError, ConflictError, NotFoundError
from services.validation import coerce_enum, require_text


CATALOG_LOGGER = logging.getLogger("asset_lifecycle.catalog")


def serialize_category(category: AssetCategory) -> dict:
    return {
        "categoryID": category.CategoryID,
        "categoryName": category.CategoryName,
        "createdDate": category.CreatedDate,
    }


def serialize_asset(asset: Asset) -> dict:
    return {
        "assetID": asset.AssetID,
        "assetName": asset.AssetName,
        "categoryID": asset.CategoryID,
        "categoryName": asset.Category.CategoryName if asset.Category else None,
        "assetModel": asset.AssetModel,
        "manufacturingDate": asset.ManufacturingDate,
        "expiryDate": asset.ExpiryDate,
        "assetValue": float(asset.AssetValue) if asset.AssetValue is not None else None,
        "status": asset.Status,
        "description": asset.Description,
        "imagePath": asset.ImagePath,
        "createdDate": asset.CreatedDate,
        "updatedDate": asset.UpdatedDate,
    }


# Categories


def _save_category(db: Session, category: AssetCategory) -> AssetCategory:
    # The unique index still catches a name taken by a concurrent writer after the pre-check.
    try:
        return save(db, category)
    except IntegrityError as exc:
        CATALOG_LOGGER.warning("Category write rejected name=%s reason=unique_constraint", category.CategoryName)
        raise AlreadyExistsError(
            f"Category with name '{category.CategoryName}' already exists",
            entity="AssetCategory",
            entity_id=category.CategoryID,
        ) from exc


def create_category(db: Session, name: str, *, actor_id: int | None = None) -> AssetCategory:
    category_name = require_text(name, "categoryName", 50)
    with unit_of_work(db):
        if find_one_by(db, AssetCategory, AssetCategory.CategoryName == category_name):
            CATALOG_LOGGER.warning("Category create rejected name=%s reason=duplicate", category_name)
            raise AlreadyExistsError(
                f"Category with name '{category_name}' already exists",
                entity="AssetCategory",
            )
        category = _save_category(db, AssetCategory(CategoryName=category_name, CreatedDate=datetime.now()))
        log_activity(db, "AssetCategory", category.CategoryID, "CreateCategory", category_name, user_id=actor_id)
    CATALOG_LOGGER.info("Category created category_id=%s name=%s", category.CategoryID, category_name)
    return category


def update_category(db: Session, category_id: int, name: str, *, actor_id: int | None = None) -> AssetCategory:
    category_name = require_text(name, "categoryName", 50)
    with unit_of_work(db):
        category = lock_by_id(db, AssetCategory, category_id, "Category")
        clash = find_one_by(
            db,
            AssetCategory,
            AssetCategory.CategoryName == category_name,
            AssetCategory.CategoryID != category_id,
        )
        if clash:
            raise AlreadyExistsError(
                f"Category with name '{category_name}' already exists",
                entity="AssetCategory",
                entity_id=clash.CategoryID,
            )
        previous = category.CategoryName
        category.CategoryName = category_name
        _save_category(db, category)
        log_activity(db, "AssetCategory", category_id, "UpdateCategory", f"{previous} -> {category_name}", user_id=actor_id)
    CATALOG_LOGGER.info("Category updated category_id=%s name=%s", category_id, category_name)
    return category


def delete_category(db: Session, category_id: int, *, actor_id: int | None = None) -> None:
    with unit_of_work(db):
        category = lock_by_id(db, AssetCategory, category_id, "Category")
        asset_count = count_by(db, Asset, Asset.CategoryID == category_id)
        if asset_count > 0:
            CATALOG_LOGGER.warning(
                "Category delete rejected category_id=%s asset_count=%s", category_id, asset_count
            )
            raise ConflictError(
                f"Cannot delete category '{category.CategoryName}' - {asset_count} assets are using this category. "
                "Please delete or reassign the assets first.",
                entity="AssetCategory",
                entity_id=category_id,
                current=f"{asset_count} assets",
                expected="0 assets",
            )
        delete(db, category)
        log_activity(db, "AssetCategory", category_id, "DeleteCategory", category.CategoryName, user_id=actor_id)
    CATALOG_LOGGER.info("Category deleted category_id=%s", category_id)


def get_category(db: Session, category_id: int) -> AssetCategory:
    return require(db, AssetCategory, category_id, "Category")


def get_category_by_name(db: Session, name: str) -> AssetCategory:
    category = find_one_by(db, AssetCategory, AssetCategory.CategoryName == (name or "").strip())
    if not category:
        raise NotFoundError(f"Category not found with name: {name}", entity="AssetCategory")
    return category


def list_categories(db: Session) -> list[AssetCategory]:
    return find_all(db, AssetCategory, order_by=AssetCategory.CategoryName)


def _find_or_create_category(db: Session, name: str) -> AssetCategory:
    category_name = require_text(name, "categoryName", 50)
    category = find_one_by(db, AssetCategory, AssetCategory.CategoryName == category_name)
    if category:
        return category
    CATALOG_LOGGER.info("Category auto-created name=%s", category_name)
    return _save_category(db, AssetCategory(CategoryName=category_name, CreatedDate=datetime.now()))


# Assets


def _validate_asset_payload(payload: AssetUpsert) -> None:
    if payload.manufacturingDate > date.today():
        raise BadInputError("Manufacturing date must be past or present.")


def create_asset(db: Session, payload: AssetUpsert, *, actor_id: int | None = None) -> Asset:
    _validate_asset_payload(payload)
    with unit_of_work(db):
        category = _find_or_create_category(db, payload.categoryName)
        asset = save(
            db,
            Asset(
                AssetName=require_text(payload.assetName, "assetName", 60),
                Category=category,
                AssetModel=payload.assetModel,
                ManufacturingDate=payload.manufacturingDate,
                ExpiryDate=payload.expiryDate,
                AssetValue=payload.assetValue,
                Status=AssetStatus.AVAILABLE.value,
                Description=payload.description,
                CreatedDate=datetime.now(),
                UpdatedDate=datetime.now(),
            ),
        )
        log_activity(db, "Asset", asset.AssetID, "CreateAsset", asset.AssetName, user_id=actor_id)
    CATALOG_LOGGER.info("Asset created asset_id=%s category=%s", asset.AssetID, category.CategoryName)
    return asset


def update_asset(db: Session, asset_id: int, payload: AssetUpsert, *, actor_id: int | None = None) -> Asset:
    _validate_asset_payload(payload)
    with unit_of_work(db):
        asset = lock_by_id(db, Asset, asset_id, "Asset")
        if payload.status is not None:
            requested = coerce_enum(AssetStatus, payload.status, "status")
            has_active = count_by(
                db,
                AssetBorrowing,
                AssetBorrowing.AssetID == asset_id,
                AssetBorrowing.Status == BorrowingStatus.ACTIVE.value,
            ) > 0
            derived = AssetStatus.BORROWED if has_active else AssetStatus.AVAILABLE
            if requested != derived:
                CATALOG_LOGGER.warning(
                    "Asset update rejected asset_id=%s requested_status=%s derived_status=%s",
                    asset_id,
                    requested.value,
                    derived.value,
                )
                raise ConflictError(
                    "Asset status follows its borrowing records and cannot be set directly.",
                    entity="Asset",
                    entity_id=asset_id,
                    current=derived,
                    expected=requested,
                )
            asset.Status = requested.value

        asset.AssetName = require_text(payload.assetName, "assetName", 60)
        asset.Category = _find_or_create_category(db, payload.categoryName)
        asset.AssetModel = payload.assetModel
        asset.ManufacturingDate = payload.manufacturingDate
        asset.ExpiryDate = payload.expiryDate
        asset.AssetValue = payload.assetValue
        asset.Description = payload.description
        asset.UpdatedDate = datetime.now()
        log_activity(db, "Asset", asset_id, "UpdateAsset", asset.AssetName, user_id=actor_id)
    CATALOG_LOGGER.info("Asset updated asset_id=%s", asset_id)
    return asset


def delete_asset(db: Session, asset_id: int, *, actor_id: int | None = None) -> None:
    with unit_of_work(db):
        asset = lock_by_id(db, Asset, asset_id, "Asset")
        if asset.Status == AssetStatus.BORROWED.value:
            CATALOG_LOGGER.warning("Asset delete rejected asset_id=%s reason=borrowed", asset_id)
            raise ConflictError(
                "Asset is borrowed - can't delete.",
                entity="Asset",
                entity_id=asset_id,
                current=AssetStatus.BORROWED,
                expected=AssetStatus.AVAILABLE,
            )
        history = {
            "borrowings": count_by(db, AssetBorrowing, AssetBorrowing.AssetID == asset_id),
            "audits": count_by(db, AssetAudit, AssetAudit.AssetID == asset_id),
            "serviceRequests": count_by(db, ServiceRequest, ServiceRequest.AssetID == asset_id),
        }
        if any(history.values()):
            CATALOG_LOGGER.warning("Asset delete rejected asset_id=%s reason=history %s", asset_id, history)
            summary = ", ".join(f"{key}={value}" for key, value in history.items() if value)
            raise ConflictError(
                f"Asset '{asset.AssetName}' has lifecycle history ({summary}) and cannot be deleted.",
                entity="Asset",
                entity_id=asset_id,
                current=summary,
                expected="no history",
            )
        delete(db, asset)
        log_activity(db, "Asset", asset_id, "DeleteAsset", asset.AssetName, user_id=actor_id)
    CATALOG_LOGGER.info("Asset deleted asset_id=%s", asset_id)


def get_asset(db: Session, asset_id: int) -> Asset:
    return require(db, Asset, asset_id, "Asset")


def list_assets(db: Session) -> list[Asset]:
    stmt = select(Asset).options(selectinload(Asset.Category)).order_by(Asset.AssetName, Asset.AssetID)
    return list(db.execute(stmt).scalars().all())


def list_assets_by_category(db: Session, category_name: str) -> list[Asset]:
    category = get_category_by_name(db, category_name)
    return find_by(db, Asset, Asset.CategoryID == category.CategoryID, order_by=Asset.AssetName)


def list_assigned_assets(db: Session, employee_id: int) -> list[Asset]:
    require(db, Employee, employee_id, "Employee")
    stmt = (
        select(Asset)
        .join(AssetBorrowing, AssetBorrowing.AssetID == Asset.AssetID)
        .where(AssetBorrowing.EmployeeID == employee_id)
        .where(AssetBorrowing.Status == BorrowingStatus.ACTIVE.value)
        .order_by(Asset.AssetName)
    )
    return list(db.execute(stmt).scalars().all())
