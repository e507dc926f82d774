import secrets

from fastapi import Header, HTTPException, Query, status

from karma_api.core.settings import settings


async def require_admin_key(
    x_admin_key: str | None = Header(None, alias="X-Admin-Key"),
    key: str | None = Query(None),
) -> None:
    if not settings.admin_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API disabled (set ADMIN_KEY)",
        )

    supplied = x_admin_key or key or ""
    if not secrets.compare_digest(supplied.encode(), settings.admin_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
