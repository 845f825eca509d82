"""Append-only audit trail and the role-scoped activity feed built on it."""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from datahall.enums import Role
from datahall.models import AuditLog, User
from datahall.policy_engine import Actor

logger = logging.getLogger(__name__)


def _json_safe(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(item) for item in value]
    return value


def add_audit(
    db: Session,
    *,
    actor_user_id: Optional[int],
    action: str,
    target_type: str,
    target_id: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Stage an audit row on ``db``; it is written by the caller's commit."""
    entry = AuditLog(
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id),
        metadata_json=_json_safe(metadata or {}),
    )
    db.add(entry)
    logger.debug("audit %s on %s:%s by %s", action, target_type, target_id, actor_user_id)
    return entry


def recent_activity(db: Session, actor: Actor, limit: int = 20) -> List[AuditLog]:
    query = db.query(AuditLog)
    if actor.role == Role.DEPT_ADMIN and actor.department_id is not None:
        department_users = select(User.id).where(User.department_id == actor.department_id)
        query = query.filter(AuditLog.actor_user_id.in_(department_users))
    elif actor.role != Role.MASTER_ADMIN:
        query = query.filter(AuditLog.actor_user_id == actor.id)
    return query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()
