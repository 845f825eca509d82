"""Unauthenticated visitor endpoints for redeeming a shared link."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from datahall import redemption
from datahall.database import get_db
from datahall.schemas import (
    AnalyticsEventIn,
    AnalyticsLogOut,
    FileGrantOut,
    LinkAccessRequest,
    PublicLinkMetaOut,
)
from datahall.storage import StorageBackend, get_storage

router = APIRouter(prefix="/public_links", tags=["public links"])


def _grant_out(grant: redemption.FileGrant) -> FileGrantOut:
    return FileGrantOut(
        signed_url=grant.signed_url,
        file_name=grant.file_name,
        size=grant.size,
        file_type=grant.file_type,
        document_id=grant.document_id,
        visitor_id=grant.visitor_id,
    )


@router.get("/{link_id}", response_model=PublicLinkMetaOut)
def public_link_meta(
    link_id: str,
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
) -> PublicLinkMetaOut:
    meta, grant = redemption.fetch_meta(db, storage, link_id)
    return PublicLinkMetaOut(
        password_required=meta.password_required,
        visitor_fields=meta.visitor_fields,
        owner_id=meta.owner_id,
        is_public=meta.is_public,
        file=_grant_out(grant) if grant is not None else None,
    )


@router.post("/{link_id}/access", response_model=FileGrantOut)
def access_link(
    link_id: str,
    payload: LinkAccessRequest,
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
) -> FileGrantOut:
    visitor = redemption.VisitorInfo.build(
        first_name=payload.first_name,
        last_name=payload.last_name,
        name=payload.name,
        email=payload.email,
        extra=payload.extra_fields(),
    )
    grant = redemption.redeem(db, storage, link_id, password=payload.password, visitor=visitor)
    return _grant_out(grant)


@router.post("/{link_id}/analytics", response_model=AnalyticsLogOut, status_code=status.HTTP_202_ACCEPTED)
def log_link_event(
    link_id: str,
    payload: AnalyticsEventIn,
    db: Session = Depends(get_db),
) -> AnalyticsLogOut:
    recorded = redemption.log_event(db, link_id, payload.event_type, visitor_id=payload.visitor_id)
    return AnalyticsLogOut(recorded=recorded)
