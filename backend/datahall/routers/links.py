from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from datahall import links
from datahall.audit import add_audit
from datahall.database import get_db
from datahall.dependencies import get_actor
from datahall.errors import NotFound
from datahall.models import DocumentLink
from datahall.policy_engine import Actor
from datahall.schemas import LinkCreate, LinkMetaOut, LinkOut

router = APIRouter(prefix="/links", tags=["links"])


def serialize_link(link: DocumentLink) -> LinkOut:
    return LinkOut(
        document_link_id=link.document_link_id,
        document_id=link.document_id,
        created_by_user_id=link.created_by_user_id,
        alias=link.alias,
        is_public=link.is_public,
        password_required=bool(link.password_hash),
        expiration_time=link.expiration_time,
        visitor_fields=list(link.visitor_fields or []),
        created_at=link.created_at,
        link_url=links.build_link_url(link.document_link_id),
    )


@router.post("", response_model=LinkOut, status_code=status.HTTP_201_CREATED)
def create_link(
    payload: LinkCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> LinkOut:
    options = links.LinkOptions(
        alias=payload.alias,
        is_public=payload.is_public,
        password=payload.password,
        expiration_time=payload.expiration_time,
        visitor_fields=tuple(payload.visitor_fields),
    )
    link = links.create_link(db, actor, payload.document_id, options)
    add_audit(
        db,
        actor_user_id=actor.id,
        action="link_created",
        target_type="document",
        target_id=link.document_id,
        metadata={
            "link_id": link.document_link_id,
            "is_public": link.is_public,
            "expiration_time": link.expiration_time.isoformat() if link.expiration_time else None,
        },
    )
    db.commit()
    db.refresh(link)
    return serialize_link(link)


@router.delete("/{link_id}")
def delete_link(
    link_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    if not links.delete_link(db, actor, link_id):
        raise NotFound("Link not found or access denied.", code="LINK_NOT_FOUND")
    add_audit(
        db,
        actor_user_id=actor.id,
        action="link_deleted",
        target_type="document_link",
        target_id=link_id,
    )
    db.commit()
    return {"status": "deleted", "link_id": link_id}


@router.get("/{link_id}", response_model=LinkMetaOut)
def link_meta(link_id: str, db: Session = Depends(get_db)) -> LinkMetaOut:
    meta = links.get_link_meta(db, link_id)
    return LinkMetaOut(
        password_required=meta.password_required,
        visitor_fields=meta.visitor_fields,
        owner_id=meta.owner_id,
        is_public=meta.is_public,
    )
