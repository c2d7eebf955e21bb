from jose import JWTError, jwt
from datetime import datetime, timedelta, timezone
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel
from sqlmodel import Session
from typing import Annotated, Optional

from .config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES
from .database import get_session
from .errors import Forbidden, Unauthorized
from .models.user import User, UserRole

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


class AuthenticatedUser(BaseModel):
    id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


# Function to create JWT token
def create_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


# Function to verify JWT token
def verify_token(token: str) -> dict:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise Unauthorized("Could not validate credentials")


def get_optional_user(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    session: Session = Depends(get_session)
) -> Optional[AuthenticatedUser]:
    """Resolve the bearer token into the caller's id and role, or None for guests."""
    if not token:
        return None

    payload = verify_token(token)
    if payload.get("type") != "access":
        raise Unauthorized("Invalid token type")
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise Unauthorized("Could not validate credentials")

    user = session.get(User, user_id)
    if not user:
        raise Unauthorized("User no longer exists")
    return AuthenticatedUser(id=user.user_id, role=user.role)


def get_current_user(
    user: Annotated[Optional[AuthenticatedUser], Depends(get_optional_user)]
) -> AuthenticatedUser:
    if user is None:
        raise Unauthorized()
    return user


def require_admin(
    user: Annotated[AuthenticatedUser, Depends(get_current_user)]
) -> AuthenticatedUser:
    if not user.is_admin:
        raise Forbidden("Admin access required")
    return user
