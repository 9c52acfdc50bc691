from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from procure_ledger.core.auth import AuthContext
from procure_ledger.core.config import get_settings
from procure_ledger.core.security import decode_token
from procure_ledger.db.session import AsyncSessionLocal, get_session
from procure_ledger.models.user import User
from procure_ledger.services.audit import SqlAuditSink
from procure_ledger.services.context import ServiceContext
from procure_ledger.services.tasks import SqlTaskService

# tokens are issued out of band (see scripts/seed.py)
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: Annotated[AsyncSession, Depends(get_session)],
) -> User:
    """Validate JWT and return the User ORM object."""
    credentials_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exc
    try:
        payload = decode_token(credentials.credentials)
        if payload.get("type") != "access":
            raise credentials_exc
        user_id: str = payload.get("sub")
        if not user_id:
            raise credentials_exc
        user_uuid = UUID(user_id)
    except (JWTError, ValueError):
        raise credentials_exc

    result = await db.execute(select(User).where(User.id == user_uuid, User.deleted_at.is_(None)))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        raise credentials_exc
    return user


async def get_auth_context(user: Annotated[User, Depends(get_current_user)]) -> AuthContext:
    return user.auth_context()


async def get_service_context(
    db: Annotated[AsyncSession, Depends(get_session)],
    auth: Annotated[AuthContext, Depends(get_auth_context)],
) -> ServiceContext:
    """Request-scoped context. Audit and task writes get their own sessions."""
    return ServiceContext(
        db=db,
        auth=auth,
        audit=SqlAuditSink(AsyncSessionLocal),
        tasks=SqlTaskService(AsyncSessionLocal),
        settings=get_settings(),
    )
