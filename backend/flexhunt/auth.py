"""Identity token verification for the FlexHunt backend.

Tokens are HS256 JWTs issued by the identity provider (Supabase Auth).
The subject claim is the user id; an application role, when present,
lives in ``app_metadata.role``.
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import Settings, get_settings
from .errors import Unauthorized

# Errors are raised as Unauthorized, not FastAPI's default 403
security = HTTPBearer(auto_error=False)

ADMIN_ROLE = "admin"
RECRUITER_ROLE = "recruiter"

# Postgres roles Supabase stamps into every token; not application roles
_PLATFORM_ROLES = {"authenticated", "anon", "service_role"}


def create_access_token(
    settings: Settings,
    user_id: str,
    role: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Mint an identity token (local development and tests)."""
    now = datetime.now(timezone.utc)
    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.jwt_expire_minutes)

    to_encode = {
        "sub": user_id,
        "exp": expire,
        "iat": now,
        "role": "authenticated",
    }
    if settings.jwt_audience:
        to_encode["aud"] = settings.jwt_audience
    if role:
        to_encode["app_metadata"] = {"role": role}
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    """Decode and validate an identity token."""
    options = {"verify_aud": settings.jwt_audience is not None}
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
    except JWTError:
        raise Unauthorized(
            "Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def _role_from_claims(payload: dict) -> str | None:
    app_metadata = payload.get("app_metadata") or {}
    role = app_metadata.get("role")
    if role:
        return role
    role = payload.get("role")
    if role and role not in _PLATFORM_ROLES:
        return role
    return None


class AuthContext:
    """The verified caller."""

    def __init__(self, user_id: str, role: str | None = None):
        self.user_id = user_id
        self.role = role

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    @property
    def is_recruiter(self) -> bool:
        return self.role in (RECRUITER_ROLE, ADMIN_ROLE)

    def __repr__(self) -> str:
        return f"AuthContext(user_id={self.user_id!r}, role={self.role!r})"


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AuthContext:
    """Resolve the caller from the ``Authorization: Bearer`` header."""
    if credentials is None or not credentials.credentials:
        raise Unauthorized(
            "Missing or invalid authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials, settings)
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized(
            "Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return AuthContext(user_id=user_id, role=_role_from_claims(payload))


# Type alias for dependency injection
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
