import json

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from alumni_portal.models import AuditLog
from alumni_portal.observability import get_logger
from alumni_portal.services.actors import Actor

logger = get_logger(__name__)


def write_audit_log(
    db: Session,
    actor: Actor | None,
    action: str,
    target_type: str = "",
    target_id: str = "",
    status: str = "success",
    details: dict | None = None,
):
    try:
        row = AuditLog(
            actor_role=actor.role if actor else "anonymous",
            actor_id=actor.user_id if actor else None,
            action=action,
            target_type=target_type,
            target_id=str(target_id) if target_id else "",
            status=status,
            details=json.dumps(details or {}, separators=(",", ":"), sort_keys=True, default=str),
        )
        db.add(row)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning("audit_write_failed", action=action, target_type=target_type, target_id=str(target_id))


def list_audit_logs(db: Session, page: int = 1, limit: int = 50, action: str | None = None) -> list[dict]:
    query = db.query(AuditLog)
    if action:
        query = query.filter(AuditLog.action == action)
    rows = query.order_by(AuditLog.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return [
        {
            "id": row.id,
            "actor_role": row.actor_role,
            "actor_id": row.actor_id,
            "action": row.action,
            "target_type": row.target_type,
            "target_id": row.target_id,
            "status": row.status,
            "details": json.loads(row.details or "{}"),
            "created_at": row.created_at,
        }
        for row in rows
    ]
