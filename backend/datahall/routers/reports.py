import csv
from io import StringIO

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session

from datahall import links
from datahall.audit import add_audit
from datahall.database import get_db
from datahall.dependencies import get_actor
from datahall.enums import VISITOR_FIELD_KEYS
from datahall.policy_engine import Actor

router = APIRouter(prefix="/reports", tags=["reports"])

VISITOR_COLUMNS = ["visitor_id", "link_id", "visited_at", "first_name", "last_name", "email"]
FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _cell(value) -> str:
    """Render a visitor-supplied value so spreadsheets show it as text."""
    text = "" if value is None else str(value)
    if text.startswith(FORMULA_PREFIXES):
        return "'" + text
    return text


def _csv_response(filename: str, content: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/documents/{document_id}/visitors.csv")
def export_document_visitors_csv(
    document_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    visitors = links.list_document_visitors(db, actor, document_id)
    extra_keys = [key for key in VISITOR_FIELD_KEYS if key not in ("name", "email")]

    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(VISITOR_COLUMNS + extra_keys)
    for visitor in visitors:
        fields = (visitor.visitor_metadata or {}).get("fields") or {}
        writer.writerow(
            [
                visitor.id,
                visitor.document_link_id,
                visitor.visited_at.isoformat(),
                _cell(visitor.first_name),
                _cell(visitor.last_name),
                _cell(visitor.email),
            ]
            + [_cell(fields.get(key)) for key in extra_keys]
        )

    add_audit(
        db,
        actor_user_id=actor.id,
        action="report_export",
        target_type="document",
        target_id=document_id,
        metadata={"report": "document_visitors", "rows": len(visitors)},
    )
    db.commit()

    return _csv_response(f"document-{document_id}-visitors.csv", buffer.getvalue())
