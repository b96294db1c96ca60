from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from brewpoints_api.core.settings import settings
from brewpoints_api.db.session import get_session


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(session: AsyncSession = Depends(get_session)) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as error:
        logger.warning("Database readiness probe failed", error=str(error))
        components["database"] = ComponentStatus(status="error", detail="Database unreachable")
        status = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    if settings.notification_email_enabled and settings.smtp_host:
        components["email"] = ComponentStatus(status="ready", detail=f"SMTP relay {settings.smtp_host}")
    else:
        components["email"] = ComponentStatus(
            status="disabled",
            detail="Email delivery disabled; notifications are stored in-app only",
        )

    if not settings.admin_api_key and settings.environment == "production":
        components["admin_auth"] = ComponentStatus(status="error", detail="Admin API key not configured")
        if status == "ready":
            status = "degraded"

    return ReadinessPayload(status=status, components=components)
