from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from datahall import organization
from datahall.audit import add_audit
from datahall.database import get_db
from datahall.dependencies import get_actor
from datahall.policy_engine import Actor
from datahall.schemas import RequestDecision, RequestOut

router = APIRouter(prefix="/requests", tags=["requests"])


@router.get("", response_model=list[RequestOut])
def list_requests(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)) -> list[RequestOut]:
    return [RequestOut.model_validate(row) for row in organization.list_requests(db, actor)]


@router.put("/{request_id}", response_model=RequestOut)
def decide_request(
    request_id: int,
    payload: RequestDecision,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> RequestOut:
    request = organization.decide_request(db, actor, request_id, payload.status)
    add_audit(
        db,
        actor_user_id=actor.id,
        action="request_decided",
        target_type="request",
        target_id=str(request.id),
        metadata={"status": request.status.value, "type": request.type.value},
    )
    db.commit()
    db.refresh(request)
    return RequestOut.model_validate(request)
