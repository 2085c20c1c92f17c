from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.asset_models import ActivityLog


def log_activity(
    db: Session,
    entity_type: str,
    entity_id: int,
    action: str,
    details: str | None = None,
    user_id: int | None = None,
) -> None:
    db.add(
        ActivityLog(
            EntityType=entity_type,
            EntityID=entity_id,
            Action=action,
            Details=details,
            UserID=user_id,
            CreatedAt=datetime.now(),
        )
    )


def list_recent_activity(db: Session, limit: int = 100, entity_type: str | None = None) -> list[dict]:
    stmt = select(ActivityLog)
    if entity_type:
        stmt = stmt.where(ActivityLog.EntityType == entity_type)
    stmt = stmt.order_by(ActivityLog.ActivityID.desc()).limit(max(1, min(limit, 500)))
    return [serialize_activity(row) for row in db.execute(stmt).scalars().all()]


def serialize_activity(row: ActivityLog) -> dict:
    return {
        "activityID": row.ActivityID,
        "entityType": row.EntityType,
        "entityID": row.EntityID,
        "action": row.Action,
        "details": row.Details,
        "userID": row.UserID,
        "createdAt": row.CreatedAt,
    }
