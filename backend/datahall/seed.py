import logging

from sqlalchemy.orm import Session

from datahall.audit import add_audit
from datahall.enums import Role
from datahall.models import Category, Department, User, UserCategoryAccess
from datahall.security import hash_password

logger = logging.getLogger(__name__)

DEMO_DEPARTMENTS = {
    "Legal": ["Contracts", "Litigation"],
    "Finance": ["Invoices", "Reports"],
}

DEMO_USERS = [
    {"email": "admin@datahall.local", "password": "Admin123!", "role": Role.MASTER_ADMIN, "department": None},
    {"email": "legal.admin@datahall.local", "password": "Legal123!", "role": Role.DEPT_ADMIN, "department": "Legal"},
    {"email": "finance.admin@datahall.local", "password": "Finance123!", "role": Role.DEPT_ADMIN, "department": "Finance"},
    {"email": "analyst@datahall.local", "password": "Analyst123!", "role": Role.DEPT_USER, "department": "Finance"},
    {"email": "guest@datahall.local", "password": "Guest123!", "role": Role.VIEW_ONLY_USER, "department": None},
]

# (user email, department, category, can_upload, can_delete)
DEMO_GRANTS = [
    ("analyst@datahall.local", "Finance", "Reports", True, False),
]


def _ensure_departments(db: Session) -> dict:
    departments = {department.name: department for department in db.query(Department).all()}
    for name, category_names in DEMO_DEPARTMENTS.items():
        department = departments.get(name)
        if department is None:
            department = Department(name=name, description=f"{name} department")
            db.add(department)
            db.flush()
            departments[name] = department

        existing = {category.name for category in department.categories}
        for category_name in category_names:
            if category_name not in existing:
                db.add(Category(name=category_name, department_id=department.id))
    db.flush()
    return departments


def _ensure_users(db: Session, departments: dict) -> dict:
    users_by_email = {user.email: user for user in db.query(User).all()}

    for demo_user in DEMO_USERS:
        if demo_user["email"] in users_by_email:
            continue

        department = departments.get(demo_user["department"])
        user = User(
            email=demo_user["email"],
            password_hash=hash_password(demo_user["password"]),
            first_name=demo_user["email"].split("@", 1)[0].split(".")[0].title(),
            last_name="Demo",
            role=demo_user["role"],
            department_id=department.id if department is not None else None,
        )
        db.add(user)
        db.flush()
        users_by_email[user.email] = user
        add_audit(
            db,
            actor_user_id=None,
            action="seed_user_created",
            target_type="user",
            target_id=str(user.id),
            metadata={"email": user.email, "role": user.role.value},
        )

    return users_by_email


def _ensure_grants(db: Session, departments: dict, users: dict) -> None:
    for email, department_name, category_name, can_upload, can_delete in DEMO_GRANTS:
        user = users.get(email)
        category = (
            db.query(Category)
            .filter(Category.name == category_name, Category.department_id == departments[department_name].id)
            .first()
        )
        if user is None or category is None:
            continue
        exists = (
            db.query(UserCategoryAccess)
            .filter(UserCategoryAccess.user_id == user.id, UserCategoryAccess.category_id == category.id)
            .first()
        )
        if exists is None:
            db.add(
                UserCategoryAccess(
                    user_id=user.id, category_id=category.id, can_upload=can_upload, can_delete=can_delete
                )
            )


def seed_demo_data(db: Session) -> None:
    departments = _ensure_departments(db)
    users = _ensure_users(db, departments)
    _ensure_grants(db, departments, users)
    db.commit()
    logger.info("Demo data ready: %s departments, %s users", len(departments), len(users))
