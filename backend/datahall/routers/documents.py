from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from datahall import analytics, documents, links
from datahall.audit import add_audit
from datahall.database import get_db
from datahall.dependencies import get_actor
from datahall.enums import AnalyticsPeriod
from datahall.errors import NotFound
from datahall.models import DocumentLink, DocumentLinkVisitor
from datahall.policy_engine import Actor
from datahall.routers.links import serialize_link
from datahall.schemas import DocumentAnalyticsOut, DocumentOut, LinkAnalyticsOut, LinkOut, VisitorOut
from datahall.storage import StorageBackend, get_storage
from datahall.upload_validation import normalized_content_type

router = APIRouter(prefix="/documents", tags=["documents"])


def serialize_visitor(visitor: DocumentLinkVisitor) -> VisitorOut:
    name = " ".join(part for part in (visitor.first_name, visitor.last_name) if part) or None
    metadata = visitor.visitor_metadata or {}
    return VisitorOut(
        id=visitor.id,
        link_id=visitor.document_link_id,
        name=name,
        email=visitor.email,
        visited_at=visitor.visited_at,
        visitor_metadata=dict(metadata.get("fields") or {}),
    )


@router.get("", response_model=list[DocumentOut])
def list_documents(
    category_id: Optional[int] = Query(default=None),
    department_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[DocumentOut]:
    rows = documents.list_documents(db, actor, category_id=category_id, department_id=department_id)
    return [DocumentOut.model_validate(row) for row in rows]


@router.post("", response_model=DocumentOut, status_code=status.HTTP_201_CREATED)
async def upload_document(
    file: UploadFile = File(...),
    category_id: int = Form(...),
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    actor: Actor = Depends(get_actor),
) -> DocumentOut:
    file_name = file.filename or "uploaded-file"
    content = await file.read()

    document = documents.upload_document(
        db,
        storage,
        actor,
        category_id=category_id,
        file_name=file_name,
        file_type=normalized_content_type(file.content_type),
        data=content,
    )
    add_audit(
        db,
        actor_user_id=actor.id,
        action="upload",
        target_type="document",
        target_id=document.document_id,
        metadata={"file_name": file_name, "category_id": category_id, "size": document.size},
    )
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        documents.discard_blob(storage, document.file_path)
        raise
    db.refresh(document)
    return DocumentOut.model_validate(document)


@router.get("/{document_id}", response_model=DocumentOut)
def get_document(
    document_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> DocumentOut:
    return DocumentOut.model_validate(documents.get_document(db, actor, document_id))


@router.get("/{document_id}/signed-url")
def document_signed_url(
    document_id: str,
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    actor: Actor = Depends(get_actor),
):
    document = documents.get_document(db, actor, document_id)
    return {"signed_url": documents.signed_url_for(storage, document), "file_name": document.file_name}


@router.delete("/{document_id}")
def delete_document(
    document_id: str,
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    actor: Actor = Depends(get_actor),
):
    document = documents.delete_document(db, storage, actor, document_id)
    add_audit(
        db,
        actor_user_id=actor.id,
        action="delete",
        target_type="document",
        target_id=document_id,
        metadata={"file_name": document.file_name},
    )
    db.commit()
    return {"status": "deleted", "document_id": document_id}


@router.get("/{document_id}/links", response_model=list[LinkOut])
def list_document_links(
    document_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[LinkOut]:
    return [serialize_link(link) for link in links.list_document_links(db, actor, document_id)]


@router.get("/{document_id}/visitors", response_model=list[VisitorOut])
def list_document_visitors(
    document_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[VisitorOut]:
    return [serialize_visitor(visitor) for visitor in links.list_document_visitors(db, actor, document_id)]


@router.get("/{document_id}/links/{link_id}/visitors", response_model=list[VisitorOut])
def list_link_visitors(
    document_id: str,
    link_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[VisitorOut]:
    return [serialize_visitor(visitor) for visitor in links.list_link_visitors(db, actor, document_id, link_id)]


@router.get("/{document_id}/analytics", response_model=DocumentAnalyticsOut)
def document_analytics(
    document_id: str,
    period: AnalyticsPeriod = Query(default=AnalyticsPeriod.ALL),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> DocumentAnalyticsOut:
    document = links.get_owned_document(db, actor, document_id)
    summary = analytics.document_summary(db, document.document_id, period)
    return DocumentAnalyticsOut(**asdict(summary))


@router.get("/{document_id}/links/{link_id}/analytics", response_model=LinkAnalyticsOut)
def link_analytics(
    document_id: str,
    link_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> LinkAnalyticsOut:
    document = links.get_owned_document(db, actor, document_id)
    link = (
        db.query(DocumentLink.document_link_id)
        .filter(DocumentLink.document_link_id == link_id, DocumentLink.document_id == document.document_id)
        .first()
    )
    if link is None:
        raise NotFound("Link not found or access denied.", code="LINK_NOT_FOUND")
    summary = analytics.link_summary(db, document.document_id, link_id)
    return LinkAnalyticsOut(**asdict(summary))
