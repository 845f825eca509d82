from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from datahall import analytics
from datahall.clock import utcnow
from datahall.config import settings
from datahall.database import get_db
from datahall.dependencies import require_cron_secret

router = APIRouter(prefix="/cron", tags=["maintenance"])


@router.post("/cleanup", dependencies=[Depends(require_cron_secret)])
def cleanup_analytics(db: Session = Depends(get_db)):
    cutoff = utcnow() - timedelta(days=settings.analytics_retention_days)
    deleted = analytics.purge_events_before(db, cutoff)
    return {"status": "ok", "deleted": deleted, "cutoff": cutoff.isoformat()}
