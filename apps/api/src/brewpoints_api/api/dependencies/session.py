"""Resolve the calling member from identity headers forwarded by the gateway."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from brewpoints_api.db.session import get_session
from brewpoints_api.models.loyalty import LoyaltyAccount


def _account_filter(session_user: str):
    if "@" in session_user:
        return func.lower(LoyaltyAccount.email) == session_user.strip().lower()
    try:
        return LoyaltyAccount.id == UUID(session_user)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session user identifier",
        ) from error


async def require_member_session(
    session_user: str | None = Header(None, alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> LoyaltyAccount:
    """Load the member's loyalty account.

    The gateway forwards either the account id or the member's email address.
    """

    if not session_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session user context",
        )

    result = await db.execute(select(LoyaltyAccount).where(_account_filter(session_user)))
    account = result.scalar_one_or_none()
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Loyalty account not found",
        )
    return account
