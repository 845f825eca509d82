from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from datahall import organization
from datahall.audit import add_audit
from datahall.database import get_db
from datahall.dependencies import get_actor
from datahall.policy_engine import Actor, CategoryCreation
from datahall.schemas import CategoryCreate, CategoryOut, DepartmentCreate, DepartmentOut, RequestOut

router = APIRouter(tags=["organization"])


@router.get("/departments", response_model=list[DepartmentOut])
def list_departments(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)) -> list[DepartmentOut]:
    _ = actor
    rows = organization.list_departments(db)
    return [DepartmentOut.model_validate(row) for row in rows]


@router.post("/departments", response_model=DepartmentOut, status_code=status.HTTP_201_CREATED)
def create_department(
    payload: DepartmentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> DepartmentOut:
    department = organization.create_department(db, actor, name=payload.name, description=payload.description)
    add_audit(
        db,
        actor_user_id=actor.id,
        action="department_created",
        target_type="department",
        target_id=str(department.id),
        metadata={"name": department.name},
    )
    db.commit()
    db.refresh(department)
    return DepartmentOut.model_validate(department)


@router.get("/categories", response_model=list[CategoryOut])
def list_categories(
    department_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[CategoryOut]:
    _ = actor
    return [CategoryOut.model_validate(row) for row in organization.list_categories(db, department_id)]


@router.post("/categories", status_code=status.HTTP_201_CREATED)
def create_category(
    payload: CategoryCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    outcome = organization.create_category(db, actor, name=payload.name, department_id=payload.department_id)

    if outcome.action == CategoryCreation.REQUEST_APPROVAL:
        request = outcome.request
        add_audit(
            db,
            actor_user_id=actor.id,
            action="category_requested",
            target_type="request",
            target_id=str(request.id),
            metadata=request.details,
        )
        db.commit()
        db.refresh(request)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={
                "status": "pending_approval",
                "request": RequestOut.model_validate(request).model_dump(mode="json"),
            },
        )

    category = outcome.category
    add_audit(
        db,
        actor_user_id=actor.id,
        action="category_created",
        target_type="category",
        target_id=str(category.id),
        metadata={"name": category.name, "department_id": category.department_id},
    )
    db.commit()
    db.refresh(category)
    return {"status": "created", "category": CategoryOut.model_validate(category).model_dump(mode="json")}
