from sqlalchemy import Column, String, Boolean, DateTime
from .base import BaseModel


class User(BaseModel):
    __tablename__ = "users"

    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
    role = Column(String, default="member")  # admin, project_manager, member


class RevokedToken(BaseModel):
    """Revoked access tokens, keyed by JWT id.

    Rows past ``expires_at`` are purged; the token would fail signature
    validation by then anyway.
    """
    __tablename__ = "revoked_tokens"

    jti = Column(String(64), unique=True, index=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
