"""Authorization decisions.

Every function here is pure: it looks only at the actor and the already-fetched
resource it is handed. Route handlers and services ask these functions and
never re-implement role checks inline.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, Mapping, Optional

from datahall.enums import Role

DENY_EXTERNAL_USER = "external-user-restricted"
DENY_CROSS_DEPARTMENT_USER = "cross-department-user"
DENY_CROSS_DEPARTMENT_CATEGORY = "cross-department-category"
DENY_FORBIDDEN_ROLE = "forbidden-role"


@dataclass(frozen=True)
class Grant:
    category_id: int
    can_upload: bool = False
    can_delete: bool = False


@dataclass(frozen=True)
class Actor:
    id: int
    role: Role
    department_id: Optional[int] = None
    grants: Mapping[int, Grant] = field(default_factory=dict)

    def grant_for(self, category_id: Optional[int]) -> Optional[Grant]:
        if category_id is None:
            return None
        return self.grants.get(category_id)

    @classmethod
    def from_user(cls, user: Any) -> "Actor":
        grants = {
            access.category_id: Grant(access.category_id, bool(access.can_upload), bool(access.can_delete))
            for access in user.category_access
        }
        return cls(id=user.id, role=Role(user.role), department_id=user.department_id, grants=grants)


@dataclass(frozen=True)
class UserRef:
    id: int
    role: Role
    department_id: Optional[int] = None

    @classmethod
    def from_user(cls, user: Any) -> "UserRef":
        return cls(id=user.id, role=Role(user.role), department_id=user.department_id)


@dataclass(frozen=True)
class CategoryRef:
    id: int
    department_id: Optional[int]

    @classmethod
    def from_category(cls, category: Any) -> "CategoryRef":
        return cls(id=category.id, department_id=category.department_id)


@dataclass(frozen=True)
class DocumentRef:
    owner_id: int
    category_id: Optional[int] = None
    department_id: Optional[int] = None

    @classmethod
    def from_document(cls, document: Any) -> "DocumentRef":
        category = document.category
        return cls(
            owner_id=document.user_id,
            category_id=document.category_id,
            department_id=category.department_id if category is not None else None,
        )


@dataclass(frozen=True)
class PolicyResult:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = PolicyResult(allowed=True)


def deny(reason: str) -> PolicyResult:
    return PolicyResult(allowed=False, reason=reason)


class CategoryCreation(str, Enum):
    CREATE_DIRECT = "CREATE_DIRECT"
    REQUEST_APPROVAL = "REQUEST_APPROVAL"
    DENY = "DENY"


class ScopeKind(str, Enum):
    GLOBAL = "GLOBAL"
    DEPARTMENT = "DEPARTMENT"
    LIMITED = "LIMITED"


@dataclass(frozen=True)
class VisibilityScope:
    kind: ScopeKind
    department_id: Optional[int] = None
    category_ids: FrozenSet[int] = frozenset()


def _same_department(actor_department_id: Optional[int], other_department_id: Optional[int]) -> bool:
    # A missing department never matches, not even another missing one.
    return actor_department_id is not None and actor_department_id == other_department_id


def can_view_document(actor: Actor, document: DocumentRef) -> bool:
    if actor.role == Role.MASTER_ADMIN:
        return True
    if actor.role == Role.DEPT_ADMIN and _same_department(actor.department_id, document.department_id):
        return True
    if document.owner_id == actor.id:
        return True
    return actor.grant_for(document.category_id) is not None


def can_delete_document(actor: Actor, document: DocumentRef) -> bool:
    if actor.role == Role.MASTER_ADMIN:
        return True
    if actor.role == Role.DEPT_ADMIN:
        return _same_department(actor.department_id, document.department_id)
    if actor.role == Role.DEPT_USER:
        grant = actor.grant_for(document.category_id)
        return grant is not None and grant.can_delete
    return False


def can_upload_to_category(actor: Actor, category: CategoryRef) -> bool:
    if actor.role == Role.MASTER_ADMIN:
        return True
    if actor.role == Role.VIEW_ONLY_USER:
        return False

    grant = actor.grant_for(category.id)
    has_upload_grant = grant is not None and grant.can_upload
    if actor.role == Role.DEPT_ADMIN:
        return _same_department(actor.department_id, category.department_id) or has_upload_grant
    return has_upload_grant


def can_grant_access(actor: Actor, target_user: UserRef, category: CategoryRef) -> PolicyResult:
    """Decide whether ``actor`` may grant or revoke ``target_user``'s access to ``category``.

    Denials carry one of the ``DENY_*`` reasons so callers can tell the user
    exactly which condition failed. Conditions are checked in a fixed order:
    external user, then user department, then category department.
    """
    if actor.role == Role.MASTER_ADMIN:
        return ALLOW
    if actor.role != Role.DEPT_ADMIN:
        return deny(DENY_FORBIDDEN_ROLE)
    if target_user.role == Role.VIEW_ONLY_USER:
        return deny(DENY_EXTERNAL_USER)
    if not _same_department(actor.department_id, target_user.department_id):
        return deny(DENY_CROSS_DEPARTMENT_USER)
    if not _same_department(actor.department_id, category.department_id):
        return deny(DENY_CROSS_DEPARTMENT_CATEGORY)
    return ALLOW


def can_create_category(actor: Actor, department_id: Optional[int]) -> CategoryCreation:
    if actor.role == Role.MASTER_ADMIN:
        return CategoryCreation.CREATE_DIRECT
    if actor.role == Role.DEPT_ADMIN and _same_department(actor.department_id, department_id):
        return CategoryCreation.REQUEST_APPROVAL
    return CategoryCreation.DENY


def can_manage_department(actor: Actor) -> bool:
    return actor.role == Role.MASTER_ADMIN


def can_decide_request(actor: Actor) -> bool:
    return actor.role == Role.MASTER_ADMIN


def can_manage_user(actor: Actor, target_user: UserRef) -> PolicyResult:
    if actor.role == Role.MASTER_ADMIN:
        return ALLOW
    if actor.role != Role.DEPT_ADMIN:
        return deny(DENY_FORBIDDEN_ROLE)
    if not _same_department(actor.department_id, target_user.department_id):
        return deny(DENY_CROSS_DEPARTMENT_USER)
    return ALLOW


def visibility_scope(actor: Actor) -> VisibilityScope:
    if actor.role == Role.MASTER_ADMIN:
        return VisibilityScope(ScopeKind.GLOBAL)
    if actor.role == Role.DEPT_ADMIN and actor.department_id is not None:
        return VisibilityScope(
            ScopeKind.DEPARTMENT,
            department_id=actor.department_id,
            category_ids=frozenset(actor.grants),
        )
    return VisibilityScope(ScopeKind.LIMITED, category_ids=frozenset(actor.grants))
