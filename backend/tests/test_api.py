from datetime import timedelta

from datahall.clock import utcnow
from datahall.errors import StorageUnavailable
from datahall.main import app
from datahall.models import Category, DocumentLink, DocumentLinkVisitor, Request
from datahall.storage import get_storage


def _upload(client, headers, category_id, content=b"hello world", name="notes.txt"):
    return client.post(
        "/documents",
        headers=headers,
        files={"file": (name, content, "text/plain")},
        data={"category_id": str(category_id)},
    )


def test_requests_without_token_are_rejected(client):
    assert client.get("/documents").status_code == 401


def test_login_and_me(client, org):
    response = client.post("/auth/login", json={"email": "analyst@example.com", "password": "Secret123!"})
    assert response.status_code == 200
    token = response.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["role"] == "DEPT_USER"

    bad = client.post("/auth/login", json={"email": "analyst@example.com", "password": "nope"})
    assert bad.status_code == 401


def test_cross_department_admin_cannot_upload_to_legal_contracts(client, org, auth_headers):
    master = auth_headers(org.master)
    department = client.post("/departments", headers=master, json={"name": "Legal Affairs"})
    assert department.status_code == 201
    category = client.post(
        "/categories", headers=master, json={"name": "Contracts", "department_id": department.json()["id"]}
    )
    assert category.status_code == 201
    category_id = category.json()["category"]["id"]

    response = _upload(client, auth_headers(org.finance_admin), category_id)
    assert response.status_code == 403

    assert _upload(client, auth_headers(org.finance_admin), org.contracts.id).status_code == 403
    assert _upload(client, master, category_id).status_code == 201


def test_upload_only_grant_uploads_but_cannot_delete(client, org, auth_headers):
    headers = auth_headers(org.finance_user)

    response = _upload(client, headers, org.reports.id)
    assert response.status_code == 201
    document_id = response.json()["document_id"]
    assert "file_path" not in response.json()

    response = client.delete(f"/documents/{document_id}", headers=headers)
    assert response.status_code == 403

    response = client.delete(f"/documents/{document_id}", headers=auth_headers(org.finance_admin))
    assert response.status_code == 200
    assert client.get(f"/documents/{document_id}", headers=headers).status_code == 404


def test_document_listing_follows_visibility(client, org, auth_headers, make_document):
    make_document(org.finance_user, org.reports)
    make_document(org.legal_admin, org.contracts)

    assert len(client.get("/documents", headers=auth_headers(org.master)).json()) == 2
    assert len(client.get("/documents", headers=auth_headers(org.finance_admin)).json()) == 1
    assert len(client.get("/documents", headers=auth_headers(org.viewer)).json()) == 0


def test_wrong_password_returns_invalid_password_and_records_nothing(
    client, db, org, auth_headers, make_document
):
    document = make_document(org.finance_user, org.reports)
    link = client.post(
        "/links",
        headers=auth_headers(org.finance_user),
        json={"document_id": document.document_id, "password": "right-pass", "visitor_fields": ["email"]},
    ).json()

    response = client.post(
        f"/public_links/{link['document_link_id']}/access",
        json={"password": "wrong-pass", "email": "visitor@example.com"},
    )
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_PASSWORD"
    assert "signed_url" not in response.json()
    assert db.query(DocumentLinkVisitor).count() == 0


def test_category_request_approved_exactly_once(client, db, org, auth_headers):
    response = client.post(
        "/categories",
        headers=auth_headers(org.legal_admin),
        json={"name": "NDAs", "department_id": org.legal.id},
    )
    assert response.status_code == 202
    request_id = response.json()["request"]["id"]

    master = auth_headers(org.master)
    first = client.put(f"/requests/{request_id}", headers=master, json={"status": "APPROVED"})
    assert first.status_code == 200
    assert first.json()["status"] == "APPROVED"

    second = client.put(f"/requests/{request_id}", headers=master, json={"status": "APPROVED"})
    assert second.status_code == 409
    assert second.json()["code"] == "REQUEST_ALREADY_PROCESSED"

    assert db.query(Category).filter(Category.name == "NDAs").count() == 1
    assert db.get(Request, request_id).approver_id == org.master.id


def test_pending_is_not_a_decision(client, org, auth_headers):
    response = client.put("/requests/1", headers=auth_headers(org.master), json={"status": "PENDING"})
    assert response.status_code == 422


def test_full_redemption_flow(client, org, auth_headers, make_document):
    document = make_document(org.finance_user, org.reports, content=b"board pack")
    owner = auth_headers(org.finance_user)

    created = client.post(
        "/links",
        headers=owner,
        json={
            "document_id": document.document_id,
            "alias": "board",
            "password": "open-sesame",
            "visitor_fields": ["name", "email", "company", "email"],
        },
    )
    assert created.status_code == 201
    link = created.json()
    assert link["password_required"] is True
    assert link["visitor_fields"] == ["name", "email", "company"]
    assert link["link_url"].endswith(f"/access/{link['document_link_id']}")
    assert "password_hash" not in link

    link_id = link["document_link_id"]
    meta = client.get(f"/public_links/{link_id}").json()
    assert meta["password_required"] is True
    assert meta["file"] is None

    access = client.post(
        f"/public_links/{link_id}/access",
        json={"password": "open-sesame", "name": "Grace Hopper", "email": "grace@example.com", "company": "Navy"},
    )
    assert access.status_code == 200
    grant = access.json()
    assert grant["file_name"] == "report.txt"
    assert grant["visitor_id"] is not None

    download = client.get(grant["signed_url"])
    assert download.status_code == 200
    assert download.content == b"board pack"

    logged = client.post(
        f"/public_links/{link_id}/analytics", json={"event_type": "DOWNLOAD", "visitor_id": grant["visitor_id"]}
    )
    assert logged.status_code == 202
    assert logged.json() == {"recorded": True}

    stats = client.get(f"/documents/{document.document_id}/analytics", headers=owner).json()
    assert stats["total_downloads"] == 1
    assert stats["link_stats"][0]["link_alias"] == "board"

    visitors = client.get(f"/documents/{document.document_id}/visitors", headers=owner).json()
    assert visitors[0]["name"] == "Grace Hopper"
    assert visitors[0]["visitor_metadata"] == {"company": "Navy"}

    report = client.get(f"/reports/documents/{document.document_id}/visitors.csv", headers=owner)
    assert report.status_code == 200
    assert "grace@example.com" in report.text

    duplicate = client.post("/links", headers=owner, json={"document_id": document.document_id, "alias": "board"})
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "LINK_ALIAS_CONFLICT"


def test_open_public_link_meta_includes_file(client, org, auth_headers, make_document):
    document = make_document(org.finance_user, org.reports)
    link = client.post(
        "/links", headers=auth_headers(org.finance_user), json={"document_id": document.document_id, "is_public": True}
    ).json()

    meta = client.get(f"/public_links/{link['document_link_id']}").json()
    assert meta["file"]["document_id"] == document.document_id
    assert client.get(f"/links/{link['document_link_id']}").json()["is_public"] is True


def test_past_expiration_is_a_bad_request(client, org, auth_headers, make_document):
    document = make_document(org.finance_user, org.reports)
    response = client.post(
        "/links",
        headers=auth_headers(org.finance_user),
        json={
            "document_id": document.document_id,
            "is_public": True,
            "expiration_time": (utcnow() - timedelta(hours=1)).isoformat(),
        },
    )
    assert response.status_code == 400
    assert response.json()["code"] == "EXPIRATION_PAST"


def test_expired_link_is_gone(client, db, org, make_document):
    document = make_document(org.finance_user, org.reports)
    link = DocumentLink(
        document_id=document.document_id,
        created_by_user_id=org.finance_user.id,
        is_public=True,
        expiration_time=utcnow() - timedelta(minutes=1),
        visitor_fields=[],
    )
    db.add(link)
    db.commit()

    assert client.get(f"/public_links/{link.document_link_id}").status_code == 410
    response = client.post(f"/public_links/{link.document_link_id}/access", json={})
    assert response.status_code == 410
    assert response.json()["code"] == "LINK_EXPIRED"

    logged = client.post(f"/public_links/{link.document_link_id}/analytics", json={"event_type": "VIEW"})
    assert logged.status_code == 202
    assert logged.json() == {"recorded": False}


def test_link_management_of_hidden_document_is_not_found(client, org, auth_headers, make_document):
    document = make_document(org.legal_admin, org.contracts)
    headers = auth_headers(org.finance_user)

    assert client.get(f"/documents/{document.document_id}/links", headers=headers).status_code == 404
    assert client.get(f"/documents/{document.document_id}/analytics", headers=headers).status_code == 404
    response = client.post("/links", headers=headers, json={"document_id": document.document_id, "is_public": True})
    assert response.status_code == 404


def test_storage_outage_is_retryable_not_forbidden(client, org, auth_headers, make_document):
    class DownStorage:
        def generate_signed_url(self, file_path, ttl_seconds, bucket=None):
            raise StorageUnavailable("Storage generate_presigned_url failed")

    document = make_document(org.finance_user, org.reports)
    app.dependency_overrides[get_storage] = lambda: DownStorage()

    response = client.get(f"/documents/{document.document_id}/signed-url", headers=auth_headers(org.finance_user))
    assert response.status_code == 503
    assert response.headers["Retry-After"]
    assert response.json() == {
        "detail": "Storage generate_presigned_url failed",
        "code": "STORAGE_UNAVAILABLE",
        "retryable": True,
    }


def test_dept_admin_grant_to_viewer_is_forbidden_with_reason(client, org, auth_headers):
    response = client.post(
        "/admin/permissions",
        headers=auth_headers(org.finance_admin),
        json={"target_user_id": org.viewer.id, "category_id": org.reports.id},
    )
    assert response.status_code == 403
    assert response.json()["code"] == "EXTERNAL_USER_RESTRICTED"


def test_archived_user_loses_access(client, org, auth_headers):
    headers = auth_headers(org.finance_user)
    response = client.post(f"/admin/users/{org.finance_user.id}/archive", headers=auth_headers(org.finance_admin))
    assert response.status_code == 200
    assert response.json()["status"] == "ARCHIVED"
    assert client.get("/documents", headers=headers).status_code == 401


def test_cron_cleanup_requires_secret(client):
    assert client.post("/cron/cleanup").status_code == 401
    assert client.post("/cron/cleanup", headers={"Authorization": "Bearer guess"}).status_code == 401


def test_owner_views_are_not_found_for_other_readers(client, org, auth_headers, make_document):
    document = make_document(org.finance_user, org.reports)
    link = client.post(
        "/links", headers=auth_headers(org.finance_user), json={"document_id": document.document_id, "is_public": True}
    ).json()
    admin = auth_headers(org.finance_admin)

    assert client.get(f"/documents/{document.document_id}", headers=admin).status_code == 200
    for path in (
        f"/documents/{document.document_id}/links",
        f"/documents/{document.document_id}/visitors",
        f"/documents/{document.document_id}/analytics",
        f"/documents/{document.document_id}/links/{link['document_link_id']}/visitors",
        f"/documents/{document.document_id}/links/{link['document_link_id']}/analytics",
        f"/reports/documents/{document.document_id}/visitors.csv",
    ):
        response = client.get(path, headers=admin)
        assert response.status_code == 404, path
        assert response.json()["code"] == "DOCUMENT_NOT_FOUND"


def test_visitor_csv_neutralises_formulas(client, org, auth_headers, make_document):
    document = make_document(org.finance_user, org.reports)
    owner = auth_headers(org.finance_user)
    link = client.post(
        "/links",
        headers=owner,
        json={"document_id": document.document_id, "is_public": True, "visitor_fields": ["email", "company"]},
    ).json()
    access = client.post(
        f"/public_links/{link['document_link_id']}/access",
        json={"name": "+Mallory", "email": "m@example.com", "company": "=SUM(A1:A9)"},
    )
    assert access.status_code == 200

    report = client.get(f"/reports/documents/{document.document_id}/visitors.csv", headers=owner)
    assert report.status_code == 200
    assert "'=SUM(A1:A9)" in report.text
    assert "'+Mallory" in report.text
    assert "m@example.com" in report.text
