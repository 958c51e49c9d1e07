from fastapi import Header, HTTPException, status

from aesthetech_api.core.settings import settings


async def require_cron_secret(authorization: str = Header("", alias="Authorization")) -> None:
    """Bearer check for externally triggered jobs; an unset secret rejects every call."""

    expected = settings.cron_secret
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Cron secret not configured",
        )

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or token != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret",
        )
