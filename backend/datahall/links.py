"""Link lifecycle: create, validate, describe and delete shareable document links.

A link is ACTIVE until its expiration time passes, then EXPIRED; deleting it
is terminal. Expiration is evaluated whenever the link is used, there is no
background sweep. :func:`validate_link_access` is the single gate every
redemption path goes through.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from datahall.clock import as_naive_utc, utcnow
from datahall.config import settings
from datahall.enums import VISITOR_FIELD_KEYS
from datahall.errors import (
    ExpirationPast,
    InvalidPassword,
    LinkAliasConflict,
    LinkExpired,
    NotFound,
    ValidationFailed,
)
from datahall.models import Document, DocumentLink, DocumentLinkVisitor
from datahall.policy_engine import Actor, DocumentRef, can_view_document
from datahall.security import hash_password, verify_password

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkOptions:
    alias: Optional[str] = None
    is_public: bool = False
    password: Optional[str] = None
    expiration_time: Optional[datetime] = None
    visitor_fields: tuple = ()


@dataclass(frozen=True)
class LinkMeta:
    password_required: bool
    visitor_fields: List[str]
    owner_id: int
    is_public: bool


def build_link_url(document_link_id: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/access/{document_link_id}"


def normalize_visitor_fields(fields: Iterable[str]) -> List[str]:
    ordered: List[str] = []
    for key in fields:
        key = key.strip()
        if key not in VISITOR_FIELD_KEYS:
            raise ValidationFailed(f"Unknown visitor field '{key}'", field="visitor_fields")
        if key not in ordered:
            ordered.append(key)
    return ordered


def is_expired(link: DocumentLink, now: Optional[datetime] = None) -> bool:
    if link.expiration_time is None:
        return False
    return link.expiration_time <= (now or utcnow())


def _get_document(db: Session, document_id: str) -> Optional[Document]:
    return (
        db.query(Document)
        .options(joinedload(Document.category))
        .filter(Document.document_id == document_id)
        .first()
    )


def get_viewable_document(db: Session, actor: Actor, document_id: str) -> Document:
    """Load a document the actor may see; absence and lack of access look the same."""
    document = _get_document(db, document_id)
    if document is None or not can_view_document(actor, DocumentRef.from_document(document)):
        raise NotFound("Document not found or access denied.", code="DOCUMENT_NOT_FOUND")
    return document


def get_owned_document(db: Session, actor: Actor, document_id: str) -> Document:
    """Load a document only for its owner; anyone else sees it as missing."""
    document = _get_document(db, document_id)
    if document is None or document.user_id != actor.id:
        raise NotFound("Document not found or access denied.", code="DOCUMENT_NOT_FOUND")
    return document


def _alias_taken(db: Session, document_id: str, alias: str) -> bool:
    return (
        db.query(DocumentLink.document_link_id)
        .filter(DocumentLink.document_id == document_id, DocumentLink.alias == alias)
        .first()
        is not None
    )


def create_link(
    db: Session,
    actor: Actor,
    document_id: str,
    options: LinkOptions,
    *,
    now: Optional[datetime] = None,
    default_ttl_seconds: Optional[int] = None,
) -> DocumentLink:
    now = now or utcnow()
    document = get_viewable_document(db, actor, document_id)

    expiration_time = as_naive_utc(options.expiration_time)
    if expiration_time is not None and expiration_time <= now:
        raise ExpirationPast("Expiration time cannot be in the past.")
    if expiration_time is None:
        ttl = settings.default_link_ttl_seconds if default_ttl_seconds is None else default_ttl_seconds
        if ttl > 0:
            expiration_time = now + timedelta(seconds=ttl)

    visitor_fields = normalize_visitor_fields(options.visitor_fields)
    alias = (options.alias or "").strip() or None

    password_hash = None
    if not options.is_public and options.password:
        password_hash = hash_password(options.password)
    elif not options.is_public:
        logger.info("Private link created without a password on document %s", document.document_id)

    # The unique constraint is authoritative; this only spares a failed insert.
    if alias is not None and _alias_taken(db, document.document_id, alias):
        raise LinkAliasConflict("This alias is already in use. Please choose a different link alias.")

    link = DocumentLink(
        document_id=document.document_id,
        created_by_user_id=actor.id,
        alias=alias,
        is_public=options.is_public,
        password_hash=password_hash,
        expiration_time=expiration_time,
        visitor_fields=visitor_fields,
        created_at=now,
    )
    db.add(link)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise LinkAliasConflict("This alias is already in use. Please choose a different link alias.") from exc
    return link


def delete_link(db: Session, actor: Actor, link_id: str) -> bool:
    link = (
        db.query(DocumentLink)
        .options(joinedload(DocumentLink.document))
        .filter(DocumentLink.document_link_id == link_id)
        .first()
    )
    if link is None:
        return False
    if link.created_by_user_id != actor.id and link.document.user_id != actor.id:
        logger.info("User %s tried to delete link %s they do not own", actor.id, link_id)
        return False
    db.delete(link)
    db.flush()
    return True


def validate_link_access(
    db: Session,
    link_id: str,
    password: Optional[str] = None,
    *,
    skip_password_check: bool = False,
    now: Optional[datetime] = None,
) -> DocumentLink:
    link = db.query(DocumentLink).filter(DocumentLink.document_link_id == link_id).first()
    if link is None:
        raise NotFound("Link not found", code="LINK_NOT_FOUND")

    if is_expired(link, now):
        raise LinkExpired("Link is expired")

    if link.password_hash and not skip_password_check:
        if not password or not verify_password(password, link.password_hash):
            raise InvalidPassword("Invalid password")

    return link


def get_link_meta(db: Session, link_id: str, *, now: Optional[datetime] = None) -> LinkMeta:
    link = (
        db.query(DocumentLink)
        .options(joinedload(DocumentLink.document))
        .filter(DocumentLink.document_link_id == link_id)
        .first()
    )
    if link is None:
        raise NotFound("Link not found", code="LINK_NOT_FOUND")
    if is_expired(link, now):
        raise LinkExpired("Link is expired")

    return LinkMeta(
        password_required=bool(link.password_hash),
        visitor_fields=list(link.visitor_fields or []),
        owner_id=link.document.user_id,
        is_public=link.is_public,
    )


def list_document_links(db: Session, actor: Actor, document_id: str) -> List[DocumentLink]:
    document = get_owned_document(db, actor, document_id)
    return (
        db.query(DocumentLink)
        .filter(DocumentLink.document_id == document.document_id)
        .order_by(DocumentLink.created_at.desc())
        .all()
    )


def list_link_visitors(db: Session, actor: Actor, document_id: str, link_id: str) -> List[DocumentLinkVisitor]:
    document = get_owned_document(db, actor, document_id)
    link = (
        db.query(DocumentLink)
        .filter(DocumentLink.document_link_id == link_id, DocumentLink.document_id == document.document_id)
        .first()
    )
    if link is None:
        raise NotFound("Link not found or access denied.", code="LINK_NOT_FOUND")
    return (
        db.query(DocumentLinkVisitor)
        .filter(DocumentLinkVisitor.document_link_id == link.document_link_id)
        .order_by(DocumentLinkVisitor.visited_at.desc())
        .all()
    )


def list_document_visitors(db: Session, actor: Actor, document_id: str) -> List[DocumentLinkVisitor]:
    document = get_owned_document(db, actor, document_id)
    return (
        db.query(DocumentLinkVisitor)
        .join(DocumentLink, DocumentLink.document_link_id == DocumentLinkVisitor.document_link_id)
        .filter(DocumentLink.document_id == document.document_id)
        .order_by(DocumentLinkVisitor.visited_at.desc())
        .all()
    )
