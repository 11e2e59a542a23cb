"""
Bearer-token authentication for the HTTP API.
Sessions are issued elsewhere; this module only verifies the JWT and exposes
the caller's identity. Secret and the AUTH_DISABLED dev bypass come from Settings.
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from .errors import AuthenticationError, ForbiddenError
from .settings import load_settings

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = 24
DEV_USER_ID = "dev"
ADMIN_ROLE = "admin"

security = HTTPBearer(auto_error=False)


def _secret_key() -> str:
    return load_settings().jwt_secret_key


def _auth_disabled() -> bool:
    return load_settings().auth_disabled


class UserIdentity(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    role: str = "user"


def create_access_token(user_id: str, name: Optional[str] = None, email: Optional[str] = None,
                        role: str = "user", expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token with role claim (dev tooling and tests)."""
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS))
    to_encode = {
        "sub": user_id,
        "role": role,
        "exp": expire,
        "iat": datetime.utcnow(),
    }
    if name:
        to_encode["name"] = name
    if email:
        to_encode["email"] = email
    return jwt.encode(to_encode, _secret_key(), algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[UserIdentity]:
    """Verify a JWT token and return the identity if valid."""
    try:
        payload = jwt.decode(token, _secret_key(), algorithms=[ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("sub")
    if not user_id:
        return None
    return UserIdentity(id=user_id, name=payload.get("name"), email=payload.get("email"),
                        role=payload.get("role") or "user")


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> UserIdentity:
    """Dependency to get the current authenticated user."""
    if _auth_disabled():
        return UserIdentity(id=DEV_USER_ID, name="Developer", role=ADMIN_ROLE)

    if credentials is None:
        raise AuthenticationError("Missing authorization token")

    identity = verify_token(credentials.credentials)
    if identity is None:
        raise AuthenticationError("Invalid or expired token")
    return identity


async def require_admin(user: UserIdentity = Depends(get_current_user)) -> UserIdentity:
    """Dependency for maintenance routes: the token must carry the admin role."""
    if user.role != ADMIN_ROLE:
        raise ForbiddenError(f"User {user.id} with role '{user.role}' called an admin route")
    return user
