from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from datahall import organization
from datahall.audit import add_audit, recent_activity
from datahall.database import get_db
from datahall.dependencies import get_actor
from datahall.errors import NotFound
from datahall.policy_engine import Actor
from datahall.schemas import ActivityOut, DashboardStatsOut, PermissionGrant, PermissionOut, UserOut

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/permissions", response_model=PermissionOut)
def grant_permission(
    payload: PermissionGrant,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> PermissionOut:
    access = organization.grant_access(
        db,
        actor,
        target_user_id=payload.target_user_id,
        category_id=payload.category_id,
        can_upload=payload.can_upload,
        can_delete=payload.can_delete,
    )
    add_audit(
        db,
        actor_user_id=actor.id,
        action="permission_granted",
        target_type="user",
        target_id=str(payload.target_user_id),
        metadata={
            "category_id": payload.category_id,
            "can_upload": payload.can_upload,
            "can_delete": payload.can_delete,
        },
    )
    db.commit()
    return PermissionOut.model_validate(access)


@router.delete("/permissions")
def revoke_permission(
    target_user_id: int = Query(...),
    category_id: int = Query(...),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    if not organization.revoke_access(db, actor, target_user_id=target_user_id, category_id=category_id):
        raise NotFound("Permission not found", code="PERMISSION_NOT_FOUND")
    add_audit(
        db,
        actor_user_id=actor.id,
        action="permission_revoked",
        target_type="user",
        target_id=str(target_user_id),
        metadata={"category_id": category_id},
    )
    db.commit()
    return {"status": "revoked", "target_user_id": target_user_id, "category_id": category_id}


@router.get("/users", response_model=list[UserOut])
def list_users(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)) -> list[UserOut]:
    return [UserOut.model_validate(user) for user in organization.list_users(db, actor)]


@router.post("/users/{user_id}/archive", response_model=UserOut)
def archive_user(
    user_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> UserOut:
    user = organization.archive_user(db, actor, user_id)
    add_audit(
        db,
        actor_user_id=actor.id,
        action="user_archived",
        target_type="user",
        target_id=str(user.id),
        metadata={"email": user.email},
    )
    db.commit()
    db.refresh(user)
    return UserOut.model_validate(user)


@router.get("/stats", response_model=DashboardStatsOut)
def dashboard_stats(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)) -> DashboardStatsOut:
    return DashboardStatsOut(**asdict(organization.dashboard_stats(db, actor)))


@router.get("/activity", response_model=list[ActivityOut])
def activity_feed(
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[ActivityOut]:
    return [ActivityOut.model_validate(entry) for entry in recent_activity(db, actor, limit)]
