"""View/download event log and its read-side rollups.

Events are de-duplicated on (visitor, link, event type, minute bucket). A
repeat of the same key inside one minute is merged into the existing row by
incrementing ``hit_count``, so there is exactly one row per key and no retry
loop. Totals count hits, not rows.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from datahall.clock import utcnow
from datahall.enums import AnalyticsEventType, AnalyticsPeriod
from datahall.links import build_link_url
from datahall.models import DocumentAnalytics, DocumentLink

logger = logging.getLogger(__name__)

PERIOD_DAYS = {
    AnalyticsPeriod.DAY: 1,
    AnalyticsPeriod.WEEK: 7,
    AnalyticsPeriod.MONTH: 30,
}


def minute_bucket(timestamp: datetime) -> datetime:
    return timestamp.replace(second=0, microsecond=0)


@dataclass
class LinkStat:
    link_id: str
    link_alias: Optional[str]
    link_url: str
    views: int = 0
    downloads: int = 0
    last_viewed: Optional[datetime] = None
    last_downloaded: Optional[datetime] = None


@dataclass
class DayBucket:
    date: str
    views: int = 0
    downloads: int = 0


@dataclass
class DocumentSummary:
    total_views: int = 0
    total_downloads: int = 0
    last_accessed: Optional[datetime] = None
    link_stats: List[LinkStat] = field(default_factory=list)
    buckets: List[DayBucket] = field(default_factory=list)


@dataclass
class LinkSummary:
    total_views: int = 0
    total_downloads: int = 0
    last_viewed: Optional[datetime] = None
    last_downloaded: Optional[datetime] = None


def _find_event(
    db: Session,
    *,
    link_id: Optional[str],
    visitor_id: Optional[int],
    event_type: AnalyticsEventType,
    bucket: datetime,
) -> Optional[DocumentAnalytics]:
    query = db.query(DocumentAnalytics).filter(
        DocumentAnalytics.event_type == event_type,
        DocumentAnalytics.minute_bucket == bucket,
    )
    if link_id is None:
        query = query.filter(DocumentAnalytics.document_link_id.is_(None))
    else:
        query = query.filter(DocumentAnalytics.document_link_id == link_id)
    if visitor_id is None:
        query = query.filter(DocumentAnalytics.visitor_id.is_(None))
    else:
        query = query.filter(DocumentAnalytics.visitor_id == visitor_id)
    return query.first()


def record_event(
    db: Session,
    *,
    document_id: str,
    event_type: AnalyticsEventType,
    link_id: Optional[str] = None,
    visitor_id: Optional[int] = None,
    timestamp: Optional[datetime] = None,
) -> DocumentAnalytics:
    """Insert an event or merge it into the row already holding its minute bucket.

    Commits on success. A concurrent insert of the same key is resolved by
    retrying once as an increment.
    """
    timestamp = timestamp or utcnow()
    bucket = minute_bucket(timestamp)
    key = dict(link_id=link_id, visitor_id=visitor_id, event_type=event_type, bucket=bucket)

    existing = _find_event(db, **key)
    if existing is None:
        event = DocumentAnalytics(
            document_id=document_id,
            document_link_id=link_id,
            visitor_id=visitor_id,
            event_type=event_type,
            timestamp=timestamp,
            minute_bucket=bucket,
            hit_count=1,
        )
        db.add(event)
        try:
            db.commit()
            return event
        except IntegrityError:
            db.rollback()
            existing = _find_event(db, **key)
            if existing is None:
                raise

    existing.hit_count = DocumentAnalytics.hit_count + 1
    existing.timestamp = timestamp
    db.commit()
    db.refresh(existing)
    return existing


def _window_start(period: AnalyticsPeriod, now: datetime) -> Optional[datetime]:
    days = PERIOD_DAYS.get(period)
    if days is None:
        return None
    return now - timedelta(days=days)


def document_summary(
    db: Session,
    document_id: str,
    period: AnalyticsPeriod = AnalyticsPeriod.ALL,
    *,
    now: Optional[datetime] = None,
) -> DocumentSummary:
    now = now or utcnow()
    summary = DocumentSummary()

    totals = (
        db.query(
            DocumentAnalytics.event_type,
            func.coalesce(func.sum(DocumentAnalytics.hit_count), 0),
            func.max(DocumentAnalytics.timestamp),
        )
        .filter(DocumentAnalytics.document_id == document_id)
        .group_by(DocumentAnalytics.event_type)
        .all()
    )
    for event_type, hits, last_seen in totals:
        if event_type == AnalyticsEventType.VIEW:
            summary.total_views = int(hits)
        else:
            summary.total_downloads = int(hits)
        if last_seen is not None and (summary.last_accessed is None or last_seen > summary.last_accessed):
            summary.last_accessed = last_seen

    summary.link_stats = _per_link_stats(db, document_id)
    summary.buckets = _day_buckets(db, document_id, _window_start(period, now))
    return summary


def _per_link_stats(db: Session, document_id: str) -> List[LinkStat]:
    rows = (
        db.query(
            DocumentAnalytics.document_link_id,
            DocumentAnalytics.event_type,
            func.coalesce(func.sum(DocumentAnalytics.hit_count), 0),
            func.max(DocumentAnalytics.timestamp),
        )
        .filter(DocumentAnalytics.document_id == document_id, DocumentAnalytics.document_link_id.isnot(None))
        .group_by(DocumentAnalytics.document_link_id, DocumentAnalytics.event_type)
        .all()
    )
    by_link: Dict[str, Dict[AnalyticsEventType, tuple]] = {}
    for link_id, event_type, hits, last_seen in rows:
        by_link.setdefault(link_id, {})[event_type] = (int(hits), last_seen)

    links = (
        db.query(DocumentLink.document_link_id, DocumentLink.alias)
        .filter(DocumentLink.document_id == document_id)
        .order_by(DocumentLink.created_at.asc())
        .all()
    )
    stats = []
    for link_id, alias in links:
        stat = LinkStat(link_id=link_id, link_alias=alias, link_url=build_link_url(link_id))
        events = by_link.get(link_id, {})
        if AnalyticsEventType.VIEW in events:
            stat.views, stat.last_viewed = events[AnalyticsEventType.VIEW]
        if AnalyticsEventType.DOWNLOAD in events:
            stat.downloads, stat.last_downloaded = events[AnalyticsEventType.DOWNLOAD]
        stats.append(stat)
    return stats


def _day_buckets(db: Session, document_id: str, since: Optional[datetime]) -> List[DayBucket]:
    query = db.query(
        DocumentAnalytics.minute_bucket, DocumentAnalytics.event_type, DocumentAnalytics.hit_count
    ).filter(DocumentAnalytics.document_id == document_id)
    if since is not None:
        query = query.filter(DocumentAnalytics.minute_bucket >= since)

    buckets: "OrderedDict[str, DayBucket]" = OrderedDict()
    for bucket, event_type, hits in query.order_by(DocumentAnalytics.minute_bucket.asc()).all():
        day = bucket.date().isoformat()
        entry = buckets.setdefault(day, DayBucket(date=day))
        if event_type == AnalyticsEventType.VIEW:
            entry.views += hits
        else:
            entry.downloads += hits
    return list(buckets.values())


def link_summary(db: Session, document_id: str, link_id: str) -> LinkSummary:
    rows = (
        db.query(
            DocumentAnalytics.event_type,
            func.coalesce(func.sum(DocumentAnalytics.hit_count), 0),
            func.max(DocumentAnalytics.timestamp),
        )
        .filter(DocumentAnalytics.document_id == document_id, DocumentAnalytics.document_link_id == link_id)
        .group_by(DocumentAnalytics.event_type)
        .all()
    )
    summary = LinkSummary()
    for event_type, hits, last_seen in rows:
        if event_type == AnalyticsEventType.VIEW:
            summary.total_views, summary.last_viewed = int(hits), last_seen
        else:
            summary.total_downloads, summary.last_downloaded = int(hits), last_seen
    return summary


def purge_events_before(db: Session, cutoff: datetime) -> int:
    deleted = (
        db.query(DocumentAnalytics)
        .filter(DocumentAnalytics.timestamp < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info("Purged %s analytics rows older than %s", deleted, cutoff.isoformat())
    return deleted
