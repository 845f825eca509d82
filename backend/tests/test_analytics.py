from datetime import datetime, timedelta

from datahall import analytics
from datahall.enums import AnalyticsEventType, AnalyticsPeriod
from datahall.links import LinkOptions, create_link
from datahall.models import DocumentAnalytics


def _link(db, org, actor_for, make_document, alias=None):
    document = make_document(org.finance_user, org.reports)
    link = create_link(db, actor_for(org.finance_user), document.document_id, LinkOptions(is_public=True, alias=alias))
    db.commit()
    return document, link


def test_minute_bucket_truncates_seconds():
    assert analytics.minute_bucket(datetime(2024, 5, 1, 9, 30, 59, 999)) == datetime(2024, 5, 1, 9, 30)


def test_same_visitor_and_event_within_a_minute_is_one_row(db, org, actor_for, make_document):
    document, link = _link(db, org, actor_for, make_document)
    first = datetime(2024, 5, 1, 9, 30, 5)

    for offset in (0, 10, 40):
        analytics.record_event(
            db,
            document_id=document.document_id,
            link_id=link.document_link_id,
            visitor_id=7,
            event_type=AnalyticsEventType.VIEW,
            timestamp=first + timedelta(seconds=offset),
        )

    rows = db.query(DocumentAnalytics).all()
    assert len(rows) == 1
    assert rows[0].hit_count == 3
    assert rows[0].minute_bucket == datetime(2024, 5, 1, 9, 30)


def test_anonymous_events_also_merge(db, org, actor_for, make_document):
    document, link = _link(db, org, actor_for, make_document)
    at = datetime(2024, 5, 1, 9, 30, 5)
    for _ in range(2):
        analytics.record_event(
            db,
            document_id=document.document_id,
            link_id=link.document_link_id,
            event_type=AnalyticsEventType.DOWNLOAD,
            timestamp=at,
        )
    assert db.query(DocumentAnalytics).count() == 1


def test_concurrent_anonymous_insert_is_merged_by_the_unique_index(db, org, actor_for, make_document, monkeypatch):
    document, link = _link(db, org, actor_for, make_document)
    at = datetime(2024, 5, 1, 9, 30, 5)
    record = dict(document_id=document.document_id, link_id=link.document_link_id, event_type=AnalyticsEventType.VIEW)
    analytics.record_event(db, timestamp=at, **record)

    real_find = analytics._find_event
    calls = []

    def stale_first_read(*args, **kwargs):
        calls.append(kwargs)
        if len(calls) == 1:
            return None
        return real_find(*args, **kwargs)

    monkeypatch.setattr(analytics, "_find_event", stale_first_read)
    analytics.record_event(db, timestamp=at + timedelta(seconds=20), **record)

    rows = db.query(DocumentAnalytics).all()
    assert len(rows) == 1
    assert rows[0].visitor_id is None
    assert rows[0].hit_count == 2


def test_distinct_keys_get_their_own_rows(db, org, actor_for, make_document):
    document, link = _link(db, org, actor_for, make_document)
    at = datetime(2024, 5, 1, 9, 30, 5)

    record = dict(document_id=document.document_id, link_id=link.document_link_id)
    analytics.record_event(db, visitor_id=1, event_type=AnalyticsEventType.VIEW, timestamp=at, **record)
    analytics.record_event(db, visitor_id=1, event_type=AnalyticsEventType.DOWNLOAD, timestamp=at, **record)
    analytics.record_event(db, visitor_id=2, event_type=AnalyticsEventType.VIEW, timestamp=at, **record)
    analytics.record_event(
        db, visitor_id=1, event_type=AnalyticsEventType.VIEW, timestamp=at + timedelta(minutes=1), **record
    )

    assert db.query(DocumentAnalytics).count() == 4


def test_document_summary_counts_hits_per_link_and_day(db, org, actor_for, make_document):
    document, link = _link(db, org, actor_for, make_document, alias="press")
    now = datetime(2024, 5, 10, 12, 0)
    record = dict(document_id=document.document_id, link_id=link.document_link_id)

    analytics.record_event(db, event_type=AnalyticsEventType.VIEW, timestamp=now - timedelta(days=20), **record)
    analytics.record_event(db, event_type=AnalyticsEventType.VIEW, timestamp=now - timedelta(hours=2), **record)
    analytics.record_event(db, event_type=AnalyticsEventType.VIEW, timestamp=now - timedelta(hours=2), **record)
    analytics.record_event(db, event_type=AnalyticsEventType.DOWNLOAD, timestamp=now - timedelta(hours=1), **record)

    summary = analytics.document_summary(db, document.document_id, AnalyticsPeriod.WEEK, now=now)
    assert summary.total_views == 3
    assert summary.total_downloads == 1
    assert summary.last_accessed == now - timedelta(hours=1)

    [stat] = summary.link_stats
    assert stat.link_alias == "press"
    assert stat.views == 3
    assert stat.downloads == 1
    assert stat.link_url.endswith(f"/access/{link.document_link_id}")

    assert [(b.date, b.views, b.downloads) for b in summary.buckets] == [("2024-05-10", 2, 1)]

    everything = analytics.document_summary(db, document.document_id, AnalyticsPeriod.ALL, now=now)
    assert [b.date for b in everything.buckets] == ["2024-04-20", "2024-05-10"]


def test_link_summary(db, org, actor_for, make_document):
    document, link = _link(db, org, actor_for, make_document)
    at = datetime(2024, 5, 1, 9, 0)
    analytics.record_event(
        db,
        document_id=document.document_id,
        link_id=link.document_link_id,
        event_type=AnalyticsEventType.DOWNLOAD,
        timestamp=at,
    )

    summary = analytics.link_summary(db, document.document_id, link.document_link_id)
    assert summary.total_views == 0
    assert summary.total_downloads == 1
    assert summary.last_downloaded == at
    assert summary.last_viewed is None


def test_purge_removes_only_old_rows(db, org, actor_for, make_document):
    document, link = _link(db, org, actor_for, make_document)
    record = dict(document_id=document.document_id, link_id=link.document_link_id, event_type=AnalyticsEventType.VIEW)
    analytics.record_event(db, timestamp=datetime(2023, 1, 1, 8, 0), **record)
    analytics.record_event(db, timestamp=datetime(2024, 6, 1, 8, 0), **record)

    assert analytics.purge_events_before(db, datetime(2024, 1, 1)) == 1
    assert db.query(DocumentAnalytics).count() == 1
