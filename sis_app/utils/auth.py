# Request context from bearer tokens
from datetime import timedelta
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import ValidationError

from sis_app.config import settings
from sis_app.models.all_models import UserRole
from sis_app.schemas.auth import RequestContext
from sis_app.utils.system_utils import local_now

# JWT Bearer
security = HTTPBearer()


def create_access_token(actor_id: UUID, organization_id: UUID, role: UserRole, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a context token. Issued by the identity provider in production; used by seed and tests here."""
    expire = local_now() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {
        "sub": str(actor_id),
        "org": str(organization_id),
        "role": UserRole(role).value,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """Verify and decode JWT token"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    if payload.get("type", "access") != "access":
        return None
    return payload


def get_request_context(credentials: HTTPAuthorizationCredentials = Depends(security)) -> RequestContext:
    """Build the explicit organization/actor/role context from the bearer token"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = verify_token(credentials.credentials)
    if payload is None:
        raise credentials_exception

    try:
        return RequestContext(
            actor_id=payload.get("sub"),
            organization_id=payload.get("org"),
            role=payload.get("role"),
        )
    except ValidationError:
        raise credentials_exception


def require_roles(*roles: UserRole):
    """Dependency factory: reject callers whose role is not listed"""
    allowed = tuple(UserRole(r) for r in roles)

    def verify_role(context: RequestContext = Depends(get_request_context)) -> RequestContext:
        if context.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action"
            )
        return context

    return verify_role


STAFF_ROLES = (UserRole.ADMIN, UserRole.PRINCIPAL, UserRole.REGISTRAR)
GRADEBOOK_ROLES = STAFF_ROLES + (UserRole.TEACHER,)
