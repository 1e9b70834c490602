from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timezone
from typing import Any, Dict

from ...database import get_db
from ...core.auth import get_token_payload, revoke_token

router = APIRouter()


@router.post("/logout")
async def logout(
    payload: Dict[str, Any] = Depends(get_token_payload),
    db: AsyncSession = Depends(get_db)
):
    """Revoke the presented access token"""

    expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
    await revoke_token(db, payload["jti"], expires_at)

    return {"message": "Logged out successfully"}
