"""Visitor-facing link redemption.

Three independent, unauthenticated steps:

1. :func:`fetch_meta` tells the visitor which form to render.
2. :func:`redeem` checks credentials, appends the visitor row and returns a
   short-lived signed URL. Either all of that happens or none of it does.
3. :func:`log_event` records a VIEW/DOWNLOAD event. It re-checks expiry but not
   the password, and never raises: analytics is best-effort.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

from sqlalchemy.orm import Session

from datahall import analytics
from datahall.audit import add_audit
from datahall.clock import utcnow
from datahall.config import settings
from datahall.enums import AnalyticsEventType
from datahall.errors import NotFound, ServiceError
from datahall.links import LinkMeta, get_link_meta, validate_link_access
from datahall.models import Document, DocumentLink, DocumentLinkVisitor
from datahall.schemas import VisitorMetadata
from datahall.storage import StorageBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VisitorInfo:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    extra: Tuple[Tuple[str, str], ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.first_name or self.last_name or self.email or self.extra)

    @classmethod
    def build(
        cls,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        name: Optional[str] = None,
        email: Optional[str] = None,
        extra: Optional[Dict[str, str]] = None,
    ) -> "VisitorInfo":
        if name and not (first_name or last_name):
            first_name, last_name = split_name(name)
        return cls(
            first_name=first_name or None,
            last_name=last_name or None,
            email=email or None,
            extra=tuple(sorted((extra or {}).items())),
        )


@dataclass(frozen=True)
class FileGrant:
    signed_url: str
    file_name: str
    size: int
    file_type: str
    document_id: str
    visitor_id: Optional[int] = None


def split_name(full_name: str) -> Tuple[str, str]:
    parts = full_name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def signed_url_ttl(link: DocumentLink, now: datetime, default_ttl: int) -> int:
    if link.expiration_time is None:
        return default_ttl
    remaining = int((link.expiration_time - now).total_seconds())
    return max(1, min(default_ttl, remaining))


def _grant_file(
    db: Session,
    storage: StorageBackend,
    link: DocumentLink,
    now: datetime,
    visitor_id: Optional[int] = None,
) -> FileGrant:
    document = db.query(Document).filter(Document.document_id == link.document_id).first()
    if document is None:
        raise NotFound("Link not found", code="LINK_NOT_FOUND")

    signed_url = storage.generate_signed_url(
        document.file_path, signed_url_ttl(link, now, settings.signed_url_ttl_seconds)
    )
    return FileGrant(
        signed_url=signed_url,
        file_name=document.file_name,
        size=document.size,
        file_type=document.file_type,
        document_id=document.document_id,
        visitor_id=visitor_id,
    )


def fetch_meta(
    db: Session, storage: StorageBackend, link_id: str, *, now: Optional[datetime] = None
) -> Tuple[LinkMeta, Optional[FileGrant]]:
    """Link requirements, plus the file itself when the link has no gate at all."""
    now = now or utcnow()
    meta = get_link_meta(db, link_id, now=now)
    if meta.is_public and not meta.password_required and not meta.visitor_fields:
        link = validate_link_access(db, link_id, now=now)
        return meta, _grant_file(db, storage, link, now)
    return meta, None


def redeem(
    db: Session,
    storage: StorageBackend,
    link_id: str,
    *,
    password: Optional[str] = None,
    visitor: Optional[VisitorInfo] = None,
    now: Optional[datetime] = None,
) -> FileGrant:
    now = now or utcnow()
    link = validate_link_access(db, link_id, password, now=now)

    visitor_row = None
    if link.visitor_fields and visitor is not None and not visitor.is_empty:
        visitor_row = DocumentLinkVisitor(
            document_link_id=link.document_link_id,
            first_name=visitor.first_name,
            last_name=visitor.last_name,
            email=visitor.email,
            visitor_metadata=VisitorMetadata(fields=dict(visitor.extra)).model_dump(),
            visited_at=now,
        )
        db.add(visitor_row)
        db.flush()

    try:
        grant = _grant_file(db, storage, link, now, visitor_row.id if visitor_row is not None else None)
    except ServiceError:
        db.rollback()
        raise

    add_audit(
        db,
        actor_user_id=None,
        action="link_redeemed",
        target_type="document_link",
        target_id=link.document_link_id,
        metadata={"document_id": link.document_id, "visitor_id": grant.visitor_id},
    )
    db.commit()
    return grant


def _visitor_of_link(db: Session, link_id: str, visitor_id: Optional[int]) -> Optional[int]:
    if visitor_id is None:
        return None
    match = (
        db.query(DocumentLinkVisitor.id)
        .filter(DocumentLinkVisitor.id == visitor_id, DocumentLinkVisitor.document_link_id == link_id)
        .first()
    )
    if match is None:
        logger.info("Dropping visitor %s from event on link %s: not a visitor of that link", visitor_id, link_id)
        return None
    return visitor_id


def log_event(
    db: Session,
    link_id: str,
    event_type: AnalyticsEventType,
    *,
    visitor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> bool:
    try:
        link = validate_link_access(db, link_id, skip_password_check=True, now=now)
        analytics.record_event(
            db,
            document_id=link.document_id,
            link_id=link.document_link_id,
            visitor_id=_visitor_of_link(db, link.document_link_id, visitor_id),
            event_type=event_type,
            timestamp=now,
        )
    except ServiceError as exc:
        logger.warning("Analytics event for link %s not recorded: %s", link_id, exc.code)
        db.rollback()
        return False
    except Exception:
        logger.exception("Failed to log analytics event for link %s", link_id)
        db.rollback()
        return False
    return True
