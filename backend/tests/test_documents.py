import pytest
from sqlalchemy.exc import SQLAlchemyError

from datahall import documents
from datahall.models import Document


def test_upload_stores_blob_and_row(db, storage, org, actor_for):
    document = documents.upload_document(
        db,
        storage,
        actor_for(org.finance_user),
        category_id=org.reports.id,
        file_name="forecast.txt",
        file_type="text/plain",
        data=b"q3 forecast",
    )
    db.commit()

    assert storage.list() == [document.file_path]
    assert db.query(Document).one().file_name == "forecast.txt"


def test_failed_row_write_removes_the_uploaded_blob(db, storage, org, actor_for, monkeypatch):
    actor = actor_for(org.finance_user)

    def broken_flush(*args, **kwargs):
        raise SQLAlchemyError("database went away")

    monkeypatch.setattr(db, "flush", broken_flush)
    with pytest.raises(SQLAlchemyError):
        documents.upload_document(
            db,
            storage,
            actor,
            category_id=org.reports.id,
            file_name="forecast.txt",
            file_type="text/plain",
            data=b"q3 forecast",
        )
    monkeypatch.undo()

    assert storage.list() == []
    assert db.query(Document).count() == 0
