import hmac

from fastapi import Header, HTTPException, status

from brewpoints_api.core.settings import settings


def _configured_keys() -> list[str]:
    # Comma separated so a new key can be rolled out before the old one is retired.
    return [key.strip() for key in settings.admin_api_key.split(",") if key.strip()]


async def require_admin_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    keys = _configured_keys()
    if not keys:
        if settings.environment == "production":
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Admin API key not configured",
            )
        return

    if not any(hmac.compare_digest(x_api_key.encode(), key.encode()) for key in keys):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
