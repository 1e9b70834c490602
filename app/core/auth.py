from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from jose import JWTError, jwt
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import uuid

from ..config import settings
from ..database import get_db
from ..models.user import User, RevokedToken
from ..utils.logging import get_logger

logger = get_logger(__name__)

security = HTTPBearer()

# Revocations recorded by this process since the last purge
_revocations_since_cleanup = 0


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Create JWT access token with a unique id (``jti``) so it can be revoked"""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)

    if "sub" in to_encode:
        to_encode["sub"] = str(to_encode["sub"])
    to_encode.update({"exp": expire, "jti": uuid.uuid4().hex})
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)

    return encoded_jwt


def decode_access_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])


async def is_token_revoked(db: AsyncSession, jti: str) -> bool:
    stmt = select(RevokedToken.id).where(RevokedToken.jti == jti)
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


async def revoke_token(db: AsyncSession, jti: str, expires_at: datetime) -> None:
    """Persist a revoked token id, purging expired revocations now and then."""
    global _revocations_since_cleanup

    try:
        if not await is_token_revoked(db, jti):
            db.add(RevokedToken(jti=jti, expires_at=expires_at))

        _revocations_since_cleanup += 1
        if _revocations_since_cleanup >= settings.revoked_token_cleanup_interval:
            await purge_expired_revocations(db)
            _revocations_since_cleanup = 0

        await db.commit()
        logger.info(f"Revoked token {jti}")

    except Exception as e:
        await db.rollback()
        logger.error(f"Failed to revoke token {jti}: {str(e)}")
        raise


async def purge_expired_revocations(db: AsyncSession) -> int:
    """Delete revocations whose token has expired anyway. Caller commits."""
    stmt = (
        delete(RevokedToken)
        .where(RevokedToken.expires_at < datetime.now(timezone.utc))
        .execution_options(synchronize_session="fetch")
    )
    result = await db.execute(stmt)
    logger.info(f"Purged {result.rowcount} expired token revocations")
    return result.rowcount


async def get_token_payload(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Validated JWT claims of the presented bearer token"""

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError:
        raise credentials_exception

    if payload.get("sub") is None or payload.get("jti") is None:
        raise credentials_exception

    if await is_token_revoked(db, payload["jti"]):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


async def get_current_user(
    payload: Dict[str, Any] = Depends(get_token_payload),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Get current authenticated user from JWT token"""

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    stmt = select(User).where(User.id == user_id, User.is_active.is_(True))
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user
