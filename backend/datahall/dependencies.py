import hmac

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session, selectinload

from datahall.config import settings
from datahall.database import get_db
from datahall.enums import UserStatus
from datahall.models import User
from datahall.policy_engine import Actor
from datahall.security import decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    credentials_error = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
        user_id = int(payload.get("sub", 0))
    except (ValueError, TypeError) as exc:
        raise credentials_error from exc

    user = (
        db.query(User)
        .options(selectinload(User.category_access))
        .filter(User.id == user_id)
        .first()
    )
    if not user or user.status == UserStatus.ARCHIVED:
        raise credentials_error
    return user


def get_actor(current_user: User = Depends(get_current_user)) -> Actor:
    """Identity context handed to services: id, role, department and category grants."""
    return Actor.from_user(current_user)


def require_cron_secret(authorization: str = Header(default="")) -> None:
    expected = f"Bearer {settings.cron_secret}"
    if not settings.cron_secret or not hmac.compare_digest(authorization.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
