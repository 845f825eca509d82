from enum import Enum


class Role(str, Enum):
    MASTER_ADMIN = "MASTER_ADMIN"
    DEPT_ADMIN = "DEPT_ADMIN"
    DEPT_USER = "DEPT_USER"
    VIEW_ONLY_USER = "VIEW_ONLY_USER"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"
    UNVERIFIED = "UNVERIFIED"


class AnalyticsEventType(str, Enum):
    VIEW = "VIEW"
    DOWNLOAD = "DOWNLOAD"


class RequestType(str, Enum):
    CREATE_CATEGORY = "CREATE_CATEGORY"
    ACCESS_DOCUMENT = "ACCESS_DOCUMENT"
    OTHER = "OTHER"


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AnalyticsPeriod(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"


VISITOR_FIELD_KEYS = ("name", "email", "address", "company", "phone", "jobTitle")
