"""Departments, categories, approval requests, category grants and user admin."""
import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from pydantic import ValidationError
from sqlalchemy import func, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from datahall.clock import utcnow
from datahall.documents import apply_document_scope
from datahall.enums import RequestStatus, RequestType, Role, UserStatus
from datahall.errors import Conflict, NotFound, PermissionDenied, RequestAlreadyProcessed, ValidationFailed
from datahall.models import Category, Department, Document, Request, User, UserCategoryAccess
from datahall.policy_engine import (
    Actor,
    CategoryCreation,
    CategoryRef,
    ScopeKind,
    UserRef,
    can_create_category,
    can_decide_request,
    can_grant_access,
    can_manage_department,
    can_manage_user,
    visibility_scope,
)
from datahall.schemas import CreateCategoryDetails, GenericRequestDetails

logger = logging.getLogger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass
class CategoryOutcome:
    action: CategoryCreation
    category: Optional[Category] = None
    request: Optional[Request] = None


@dataclass
class DashboardStats:
    total_documents: int = 0
    active_users: int = 0
    open_requests: int = 0
    storage_used: int = 0


def parse_request_details(
    request_type: RequestType, details: dict
) -> Union[CreateCategoryDetails, GenericRequestDetails]:
    model = CreateCategoryDetails if request_type == RequestType.CREATE_CATEGORY else GenericRequestDetails
    try:
        return model.model_validate(details or {})
    except ValidationError as exc:
        raise ValidationFailed(f"Invalid {request_type.value} request details", field="details") from exc


def create_department(db: Session, actor: Actor, *, name: str, description: Optional[str] = None) -> Department:
    if not can_manage_department(actor):
        raise PermissionDenied("Only master admins can create departments.")
    department = Department(name=name.strip(), description=description)
    db.add(department)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("Department name already exists", code="DEPARTMENT_CONFLICT") from exc
    return department


def list_departments(db: Session) -> List[Department]:
    return db.query(Department).order_by(Department.name.asc()).all()


def _insert_category(db: Session, name: str, department_id: int) -> Category:
    category = Category(name=name, department_id=department_id)
    db.add(category)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("Category name already exists in this department", code="CATEGORY_CONFLICT") from exc
    return category


def create_category(db: Session, actor: Actor, *, name: str, department_id: int) -> CategoryOutcome:
    name = name.strip()
    if not name:
        raise ValidationFailed("Category name is required", field="name")

    decision = can_create_category(actor, department_id)
    if decision == CategoryCreation.DENY:
        raise PermissionDenied("You do not have permission to create categories in this department.")

    if db.query(Department.id).filter(Department.id == department_id).first() is None:
        raise NotFound("Department not found", code="DEPARTMENT_NOT_FOUND")

    if decision == CategoryCreation.CREATE_DIRECT:
        return CategoryOutcome(decision, category=_insert_category(db, name, department_id))

    details = CreateCategoryDetails(category_name=name, department_id=department_id)
    request = Request(
        type=RequestType.CREATE_CATEGORY,
        status=RequestStatus.PENDING,
        requester_id=actor.id,
        details=details.model_dump(),
    )
    db.add(request)
    db.flush()
    return CategoryOutcome(decision, request=request)


def list_categories(db: Session, department_id: Optional[int] = None) -> List[Category]:
    query = db.query(Category)
    if department_id is not None:
        query = query.filter(Category.department_id == department_id)
    return query.order_by(Category.name.asc()).all()


def list_requests(db: Session, actor: Actor) -> List[Request]:
    query = db.query(Request)
    if actor.role == Role.MASTER_ADMIN:
        query = query.filter(Request.status == RequestStatus.PENDING)
    elif actor.role == Role.DEPT_ADMIN:
        query = query.filter(Request.requester_id == actor.id)
    else:
        raise PermissionDenied("You cannot view requests.")
    return query.order_by(Request.created_at.desc()).all()


def decide_request(db: Session, actor: Actor, request_id: int, status: RequestStatus) -> Request:
    """Move a PENDING request to a terminal status and apply its effect exactly once.

    The status change is a conditional UPDATE, so of two concurrent decisions
    only one sees a matched row; the other gets ``REQUEST_ALREADY_PROCESSED``.
    """
    if not can_decide_request(actor):
        raise PermissionDenied("Only master admins can decide requests.")
    if status not in (RequestStatus.APPROVED, RequestStatus.REJECTED):
        raise ValidationFailed("status must be APPROVED or REJECTED", field="status")

    request = db.query(Request).filter(Request.id == request_id).first()
    if request is None:
        raise NotFound("Request not found", code="REQUEST_NOT_FOUND")
    if request.status != RequestStatus.PENDING:
        raise RequestAlreadyProcessed("Request already processed")

    details = parse_request_details(RequestType(request.type), request.details)

    result = db.execute(
        update(Request)
        .where(Request.id == request_id, Request.status == RequestStatus.PENDING)
        .values(status=status, approver_id=actor.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise RequestAlreadyProcessed("Request already processed")

    if status == RequestStatus.APPROVED and isinstance(details, CreateCategoryDetails):
        duplicate = (
            db.query(Category.id)
            .filter(Category.name == details.category_name, Category.department_id == details.department_id)
            .first()
        )
        if duplicate is None:
            _insert_category(db, details.category_name, details.department_id)
        else:
            logger.info("Approved request %s names an existing category; nothing created", request_id)

    db.refresh(request)
    return request


def _grant_target(db: Session, target_user_id: int, category_id: int):
    target = db.query(User).filter(User.id == target_user_id).first()
    if target is None:
        raise NotFound("Target user not found", code="USER_NOT_FOUND")
    category = db.query(Category).filter(Category.id == category_id).first()
    if category is None:
        raise NotFound("Category not found", code="CATEGORY_NOT_FOUND")
    return target, category


def _check_grant(actor: Actor, target: User, category: Category) -> None:
    result = can_grant_access(actor, UserRef.from_user(target), CategoryRef.from_category(category))
    if not result.allowed:
        logger.info(
            "User %s denied managing access of user %s to category %s: %s",
            actor.id,
            target.id,
            category.id,
            result.reason,
        )
        raise PermissionDenied("You cannot manage this user's access to this category.", reason=result.reason)


def _update_or_add_grant(
    db: Session, user_id: int, category_id: int, can_upload: bool, can_delete: bool
) -> UserCategoryAccess:
    access = (
        db.query(UserCategoryAccess)
        .filter(UserCategoryAccess.user_id == user_id, UserCategoryAccess.category_id == category_id)
        .first()
    )
    if access is None:
        access = UserCategoryAccess(user_id=user_id, category_id=category_id, created_at=utcnow())
        db.add(access)
    access.can_upload = can_upload
    access.can_delete = can_delete
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("Access was granted concurrently; retry the request.", code="GRANT_CONFLICT") from exc
    return access


def grant_access(
    db: Session,
    actor: Actor,
    *,
    target_user_id: int,
    category_id: int,
    can_upload: bool = False,
    can_delete: bool = False,
) -> UserCategoryAccess:
    target, category = _grant_target(db, target_user_id, category_id)
    _check_grant(actor, target, category)

    insert = _INSERT_BY_DIALECT.get(db.get_bind().dialect.name)
    if insert is None:
        return _update_or_add_grant(db, target.id, category.id, can_upload, can_delete)

    statement = insert(UserCategoryAccess).values(
        user_id=target.id,
        category_id=category.id,
        can_upload=can_upload,
        can_delete=can_delete,
        created_at=utcnow(),
    )
    statement = statement.on_conflict_do_update(
        index_elements=[UserCategoryAccess.user_id, UserCategoryAccess.category_id],
        set_={"can_upload": can_upload, "can_delete": can_delete},
    )
    db.execute(statement)
    db.expire_all()
    return (
        db.query(UserCategoryAccess)
        .filter(UserCategoryAccess.user_id == target.id, UserCategoryAccess.category_id == category.id)
        .one()
    )


def revoke_access(db: Session, actor: Actor, *, target_user_id: int, category_id: int) -> bool:
    target, category = _grant_target(db, target_user_id, category_id)
    _check_grant(actor, target, category)
    deleted = (
        db.query(UserCategoryAccess)
        .filter(UserCategoryAccess.user_id == target.id, UserCategoryAccess.category_id == category.id)
        .delete(synchronize_session=False)
    )
    return deleted > 0


def list_users(db: Session, actor: Actor) -> List[User]:
    scope = visibility_scope(actor)
    query = db.query(User)
    if scope.kind == ScopeKind.DEPARTMENT:
        query = query.filter(User.department_id == scope.department_id)
    elif scope.kind == ScopeKind.LIMITED:
        raise PermissionDenied("You cannot list users.")
    return query.order_by(User.created_at.desc()).all()


def archive_user(db: Session, actor: Actor, user_id: int) -> User:
    target = db.query(User).filter(User.id == user_id).first()
    if target is None:
        raise NotFound("User not found", code="USER_NOT_FOUND")
    result = can_manage_user(actor, UserRef.from_user(target))
    if not result.allowed:
        raise PermissionDenied("You cannot manage this user.", reason=result.reason)
    target.status = UserStatus.ARCHIVED
    db.flush()
    return target


def dashboard_stats(db: Session, actor: Actor) -> DashboardStats:
    scope = visibility_scope(actor)
    documents = apply_document_scope(db.query(Document), actor, scope)
    stats = DashboardStats(
        total_documents=documents.count(),
        storage_used=int(
            apply_document_scope(db.query(func.coalesce(func.sum(Document.size), 0)), actor, scope).scalar() or 0
        ),
    )

    if scope.kind == ScopeKind.GLOBAL:
        stats.active_users = db.query(User).filter(User.status == UserStatus.ACTIVE).count()
        stats.open_requests = db.query(Request).filter(Request.status == RequestStatus.PENDING).count()
    elif scope.kind == ScopeKind.DEPARTMENT:
        stats.active_users = (
            db.query(User)
            .filter(User.department_id == scope.department_id, User.status == UserStatus.ACTIVE)
            .count()
        )
        stats.open_requests = (
            db.query(Request)
            .filter(Request.requester_id == actor.id, Request.status == RequestStatus.PENDING)
            .count()
        )
    return stats
