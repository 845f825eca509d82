from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from datahall.audit import add_audit
from datahall.database import get_db
from datahall.dependencies import get_current_user
from datahall.enums import UserStatus
from datahall.models import User
from datahall.schemas import LoginRequest, TokenResponse, UserOut
from datahall.security import create_access_token, verify_password

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: Session = Depends(get_db)) -> TokenResponse:
    email = payload.email.strip().lower()
    user = db.query(User).filter(User.email == email).first()

    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    if user.status == UserStatus.ARCHIVED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is archived")

    token = create_access_token({"sub": str(user.id), "role": user.role.value, "email": user.email})

    add_audit(
        db,
        actor_user_id=user.id,
        action="login",
        target_type="user",
        target_id=str(user.id),
        metadata={"email": user.email},
    )
    db.commit()

    return TokenResponse(access_token=token)


@router.get("/me", response_model=UserOut)
def me(current_user: User = Depends(get_current_user)) -> UserOut:
    return UserOut.model_validate(current_user)
