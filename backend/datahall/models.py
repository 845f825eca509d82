import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from datahall.clock import utcnow
from datahall.database import Base
from datahall.enums import AnalyticsEventType, RequestStatus, RequestType, Role, UserStatus


def _uuid() -> str:
    return str(uuid.uuid4())


class Department(Base):
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    categories = relationship("Category", back_populates="department")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(128), nullable=False, default="")
    last_name = Column(String(128), nullable=False, default="")
    role = Column(Enum(Role, native_enum=False, length=32), nullable=False, default=Role.DEPT_USER)
    status = Column(Enum(UserStatus, native_enum=False, length=32), nullable=False, default=UserStatus.ACTIVE)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    department = relationship("Department")
    category_access = relationship("UserCategoryAccess", back_populates="user", cascade="all, delete-orphan")


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (UniqueConstraint("name", "department_id", name="uq_category_name_department"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    department = relationship("Department", back_populates="categories")
    access_list = relationship("UserCategoryAccess", back_populates="category", cascade="all, delete-orphan")


class UserCategoryAccess(Base):
    __tablename__ = "user_category_access"
    __table_args__ = (UniqueConstraint("user_id", "category_id", name="uq_user_category_access"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)
    can_upload = Column(Boolean, nullable=False, default=False)
    can_delete = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="category_access")
    category = relationship("Category", back_populates="access_list")


class Document(Base):
    __tablename__ = "documents"

    document_id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    file_name = Column(String(255), nullable=False)
    file_path = Column(String(500), nullable=False)
    file_type = Column(String(128), nullable=False)
    size = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    owner = relationship("User")
    category = relationship("Category")
    links = relationship("DocumentLink", back_populates="document", cascade="all, delete-orphan")


class DocumentLink(Base):
    __tablename__ = "document_links"
    __table_args__ = (UniqueConstraint("document_id", "alias", name="uq_document_link_alias"),)

    document_link_id = Column(String(36), primary_key=True, default=_uuid)
    document_id = Column(String(36), ForeignKey("documents.document_id"), nullable=False, index=True)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    alias = Column(String(255), nullable=True)
    is_public = Column(Boolean, nullable=False, default=False)
    password_hash = Column(String(255), nullable=True)
    expiration_time = Column(DateTime, nullable=True)
    visitor_fields = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    document = relationship("Document", back_populates="links")
    visitors = relationship("DocumentLinkVisitor", back_populates="link", cascade="all, delete-orphan")


class DocumentLinkVisitor(Base):
    __tablename__ = "document_link_visitors"

    id = Column(Integer, primary_key=True, index=True)
    document_link_id = Column(
        String(36), ForeignKey("document_links.document_link_id"), nullable=False, index=True
    )
    first_name = Column(String(128), nullable=True)
    last_name = Column(String(128), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    visitor_metadata = Column(JSON, nullable=False, default=dict)
    visited_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    link = relationship("DocumentLink", back_populates="visitors")


class DocumentAnalytics(Base):
    __tablename__ = "document_analytics"

    id = Column(Integer, primary_key=True, index=True)
    # Deleting a document or link leaves its analytics rows behind for the retention sweep.
    document_id = Column(String(36), nullable=False, index=True)
    document_link_id = Column(String(36), nullable=True, index=True)
    visitor_id = Column(Integer, nullable=True, index=True)
    event_type = Column(Enum(AnalyticsEventType, native_enum=False, length=16), nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)
    minute_bucket = Column(DateTime, nullable=False, index=True)
    hit_count = Column(Integer, nullable=False, default=1)


# NULL ids are coalesced so anonymous events share one row per minute bucket.
Index(
    "uq_analytics_minute_bucket",
    func.coalesce(DocumentAnalytics.visitor_id, -1),
    func.coalesce(DocumentAnalytics.document_link_id, ""),
    DocumentAnalytics.event_type,
    DocumentAnalytics.minute_bucket,
    unique=True,
)


class Request(Base):
    __tablename__ = "requests"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(Enum(RequestType, native_enum=False, length=32), nullable=False)
    status = Column(
        Enum(RequestStatus, native_enum=False, length=16), nullable=False, default=RequestStatus.PENDING
    )
    requester_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    approver_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    requester = relationship("User", foreign_keys=[requester_id])
    approver = relationship("User", foreign_keys=[approver_id])


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    actor_user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    action = Column(String(64), nullable=False, index=True)
    target_type = Column(String(64), nullable=False)
    target_id = Column(String(64), nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)
    metadata_json = Column(JSON, nullable=False, default=dict)

    actor = relationship("User")
