from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from datahall.database import Base, get_db
from datahall.enums import Role
from datahall.main import app
from datahall.models import Category, Department, Document, User, UserCategoryAccess
from datahall.policy_engine import Actor
from datahall.security import create_access_token, hash_password
from datahall.storage import FileMetadata, LocalStorage, get_storage


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "blobs", "http://testserver", secret="test-signing-secret")


@pytest.fixture
def client(session_factory, storage):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


def _user(db, email, role, department=None):
    user = User(
        email=email,
        password_hash=hash_password("Secret123!"),
        first_name=email.split("@", 1)[0],
        last_name="Test",
        role=role,
        department_id=department.id if department is not None else None,
    )
    db.add(user)
    db.flush()
    return user


@pytest.fixture
def org(db):
    """Two departments (Legal, Finance), one admin each, a Finance user and an external viewer."""
    legal = Department(name="Legal")
    finance = Department(name="Finance")
    db.add_all([legal, finance])
    db.flush()

    contracts = Category(name="Contracts", department_id=legal.id)
    reports = Category(name="Reports", department_id=finance.id)
    invoices = Category(name="Invoices", department_id=finance.id)
    db.add_all([contracts, reports, invoices])
    db.flush()

    master = _user(db, "master@example.com", Role.MASTER_ADMIN)
    legal_admin = _user(db, "legal.admin@example.com", Role.DEPT_ADMIN, legal)
    finance_admin = _user(db, "finance.admin@example.com", Role.DEPT_ADMIN, finance)
    finance_user = _user(db, "analyst@example.com", Role.DEPT_USER, finance)
    viewer = _user(db, "guest@example.com", Role.VIEW_ONLY_USER)

    db.add(UserCategoryAccess(user_id=finance_user.id, category_id=reports.id, can_upload=True, can_delete=False))
    db.commit()

    return SimpleNamespace(
        legal=legal,
        finance=finance,
        contracts=contracts,
        reports=reports,
        invoices=invoices,
        master=master,
        legal_admin=legal_admin,
        finance_admin=finance_admin,
        finance_user=finance_user,
        viewer=viewer,
    )


@pytest.fixture
def actor_for(db):
    def build(user):
        db.refresh(user)
        return Actor.from_user(user)

    return build


@pytest.fixture
def auth_headers():
    def build(user):
        token = create_access_token({"sub": str(user.id), "role": user.role.value, "email": user.email})
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture
def make_document(db, storage):
    def build(owner, category, content=b"quarterly numbers", file_name="report.txt"):
        file_path = storage.upload(content, FileMetadata(user_id=owner.id, file_name=file_name, file_type="text/plain"))
        document = Document(
            user_id=owner.id,
            category_id=category.id if category is not None else None,
            file_name=file_name,
            file_path=file_path,
            file_type="text/plain",
            size=len(content),
        )
        db.add(document)
        db.commit()
        return document

    return build
