import logging
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from datahall.config import settings
from datahall.errors import InfrastructureError, NotFound, PermissionDenied
from datahall.models import Category, Document
from datahall.policy_engine import (
    Actor,
    CategoryRef,
    DocumentRef,
    ScopeKind,
    VisibilityScope,
    can_delete_document,
    can_upload_to_category,
    can_view_document,
    visibility_scope,
)
from datahall.storage import FileMetadata, StorageBackend
from datahall.upload_validation import validate_upload

logger = logging.getLogger(__name__)


def apply_document_scope(query: Query, actor: Actor, scope: VisibilityScope) -> Query:
    """Restrict a Document query to what ``scope`` lets the actor see."""
    if scope.kind == ScopeKind.GLOBAL:
        return query

    conditions = [Document.user_id == actor.id]
    if scope.category_ids:
        conditions.append(Document.category_id.in_(sorted(scope.category_ids)))
    if scope.kind == ScopeKind.DEPARTMENT:
        department_categories = select(Category.id).where(Category.department_id == scope.department_id)
        conditions.append(Document.category_id.in_(department_categories))
    return query.filter(or_(*conditions))


def list_documents(
    db: Session,
    actor: Actor,
    *,
    category_id: Optional[int] = None,
    department_id: Optional[int] = None,
) -> List[Document]:
    query = db.query(Document).options(joinedload(Document.category))
    query = apply_document_scope(query, actor, visibility_scope(actor))
    if category_id is not None:
        query = query.filter(Document.category_id == category_id)
    if department_id is not None:
        query = query.join(Category, Category.id == Document.category_id).filter(
            Category.department_id == department_id
        )
    return query.order_by(Document.created_at.desc()).all()


def get_document(db: Session, actor: Actor, document_id: str) -> Document:
    document = (
        db.query(Document)
        .options(joinedload(Document.category))
        .filter(Document.document_id == document_id)
        .first()
    )
    if document is None:
        raise NotFound("Document not found", code="DOCUMENT_NOT_FOUND")
    if not can_view_document(actor, DocumentRef.from_document(document)):
        logger.info("User %s denied view of document %s", actor.id, document_id)
        raise PermissionDenied("You do not have permission to view this document.")
    return document


def discard_blob(storage: StorageBackend, file_path: str) -> None:
    """Remove a blob whose document row was never written."""
    try:
        storage.delete(file_path)
    except InfrastructureError:
        logger.exception("Orphaned blob %s could not be removed", file_path)


def upload_document(
    db: Session,
    storage: StorageBackend,
    actor: Actor,
    *,
    category_id: int,
    file_name: str,
    file_type: str,
    data: bytes,
) -> Document:
    category = db.query(Category).filter(Category.id == category_id).first()
    if category is None:
        raise NotFound("Category not found", code="CATEGORY_NOT_FOUND")
    if not can_upload_to_category(actor, CategoryRef.from_category(category)):
        logger.info("User %s denied upload to category %s", actor.id, category_id)
        raise PermissionDenied("You do not have permission to upload to this category.")

    validate_upload(
        file_name,
        file_type,
        len(data),
        allowed_types=settings.allowed_file_types,
        max_size_bytes=settings.max_file_size_bytes,
    )

    file_path = storage.upload(data, FileMetadata(user_id=actor.id, file_name=file_name, file_type=file_type))
    document = Document(
        user_id=actor.id,
        category_id=category.id,
        file_name=file_name,
        file_path=file_path,
        file_type=file_type,
        size=len(data),
    )
    db.add(document)
    try:
        db.flush()
    except SQLAlchemyError:
        db.rollback()
        discard_blob(storage, file_path)
        raise
    return document


def delete_document(db: Session, storage: StorageBackend, actor: Actor, document_id: str) -> Document:
    document = (
        db.query(Document)
        .options(joinedload(Document.category))
        .filter(Document.document_id == document_id)
        .first()
    )
    if document is None:
        raise NotFound("Document not found", code="DOCUMENT_NOT_FOUND")
    if not can_delete_document(actor, DocumentRef.from_document(document)):
        logger.info("User %s denied delete of document %s", actor.id, document_id)
        raise PermissionDenied("You do not have permission to delete this document.")

    db.delete(document)
    db.flush()
    # The row goes only if the blob goes too; a storage failure rolls the delete back.
    try:
        storage.delete(document.file_path)
    except Exception:
        db.rollback()
        raise
    return document


def signed_url_for(storage: StorageBackend, document: Document) -> str:
    return storage.generate_signed_url(document.file_path, settings.signed_url_ttl_seconds)
