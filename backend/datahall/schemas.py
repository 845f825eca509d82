import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from datahall.enums import AnalyticsEventType, RequestStatus, RequestType, Role, UserStatus

EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    first_name: str
    last_name: str
    role: Role
    status: UserStatus
    department_id: Optional[int]
    created_at: datetime


class DepartmentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None


class DepartmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    created_at: datetime


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    department_id: int


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    department_id: int
    created_at: datetime


class PermissionGrant(BaseModel):
    target_user_id: int
    category_id: int
    can_upload: bool = False
    can_delete: bool = False


class PermissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    category_id: int
    can_upload: bool
    can_delete: bool


class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    document_id: str
    user_id: int
    category_id: Optional[int]
    file_name: str
    file_type: str
    size: int
    created_at: datetime
    updated_at: datetime


class LinkCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    document_id: str
    alias: Optional[str] = Field(default=None, max_length=255)
    is_public: bool = False
    password: Optional[str] = None
    expiration_time: Optional[datetime] = None
    visitor_fields: List[str] = Field(default_factory=list)

    @field_validator("alias")
    @classmethod
    def _strip_alias(cls, value: Optional[str]) -> Optional[str]:
        return _blank_to_none(value)

    @field_validator("password")
    @classmethod
    def _password_length(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        if len(value.strip()) < 5:
            raise ValueError("Password must be at least 5 characters")
        return value


class LinkOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    document_link_id: str
    document_id: str
    created_by_user_id: int
    alias: Optional[str]
    is_public: bool
    password_required: bool
    expiration_time: Optional[datetime]
    visitor_fields: List[str]
    created_at: datetime
    link_url: str


class LinkMetaOut(BaseModel):
    password_required: bool
    visitor_fields: List[str]
    owner_id: int
    is_public: bool


class FileGrantOut(BaseModel):
    signed_url: str
    file_name: str
    size: int
    file_type: str
    document_id: str
    visitor_id: Optional[int] = None


class PublicLinkMetaOut(LinkMetaOut):
    file: Optional[FileGrantOut] = None


class LinkAccessRequest(BaseModel):
    """Visitor submission; fields beyond the named ones are kept as visitor metadata."""

    model_config = ConfigDict(extra="allow")

    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None

    @field_validator("first_name", "last_name", "name", "email")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return _blank_to_none(value)

    @field_validator("email")
    @classmethod
    def _valid_email(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not EMAIL_RE.match(value):
            raise ValueError("Invalid email")
        return value

    @model_validator(mode="after")
    def _scalar_extras(self) -> "LinkAccessRequest":
        for key, value in (self.model_extra or {}).items():
            if isinstance(value, (dict, list)):
                raise ValueError(f"Visitor field '{key}' must be a plain value")
        return self

    def extra_fields(self) -> Dict[str, str]:
        extras: Dict[str, str] = {}
        for key, value in (self.model_extra or {}).items():
            if value is None:
                continue
            text = str(value).strip()
            if text:
                extras[key] = text
        return extras


class AnalyticsEventIn(BaseModel):
    event_type: AnalyticsEventType
    visitor_id: Optional[int] = None


class AnalyticsLogOut(BaseModel):
    recorded: bool


class VisitorMetadata(BaseModel):
    version: Literal[1] = 1
    fields: Dict[str, str] = Field(default_factory=dict)


class CreateCategoryDetails(BaseModel):
    version: Literal[1] = 1
    category_name: str = Field(min_length=1, max_length=255)
    department_id: int


class GenericRequestDetails(BaseModel):
    version: Literal[1] = 1
    note: Optional[str] = None


class RequestDecision(BaseModel):
    status: RequestStatus

    @field_validator("status")
    @classmethod
    def _terminal_only(cls, value: RequestStatus) -> RequestStatus:
        if value == RequestStatus.PENDING:
            raise ValueError("status must be APPROVED or REJECTED")
        return value


class RequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: RequestType
    status: RequestStatus
    requester_id: int
    approver_id: Optional[int]
    details: Dict[str, Any]
    created_at: datetime
    updated_at: datetime


class VisitorOut(BaseModel):
    id: int
    link_id: str
    name: Optional[str]
    email: Optional[str]
    visited_at: datetime
    visitor_metadata: Dict[str, str]


class LinkStatOut(BaseModel):
    link_id: str
    link_alias: Optional[str]
    link_url: str
    views: int
    downloads: int
    last_viewed: Optional[datetime]
    last_downloaded: Optional[datetime]


class AnalyticsBucketOut(BaseModel):
    date: str
    views: int
    downloads: int


class DocumentAnalyticsOut(BaseModel):
    total_views: int
    total_downloads: int
    last_accessed: Optional[datetime]
    link_stats: List[LinkStatOut]
    buckets: List[AnalyticsBucketOut]


class LinkAnalyticsOut(BaseModel):
    total_views: int
    total_downloads: int
    last_viewed: Optional[datetime]
    last_downloaded: Optional[datetime]


class DashboardStatsOut(BaseModel):
    total_documents: int
    active_users: int
    open_requests: int
    storage_used: int


class ActivityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    actor_user_id: Optional[int]
    action: str
    target_type: str
    target_id: str
    timestamp: datetime
    metadata_json: Dict[str, Any]
