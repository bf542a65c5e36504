import logging
import secrets

from fastapi import HTTPException, Request
from fastapi.security.utils import get_authorization_scheme_param

from vibecredits.core.settings import settings


logger = logging.getLogger(__name__)


def require_cron_secret(request: Request) -> None:
    """Guard scheduler-only routes with ``Authorization: Bearer <CRON_SECRET>``.

    With no secret configured the check is skipped outside production and
    refused in production.
    """
    expected = settings.cron_secret
    if not expected:
        if settings.is_production:
            raise HTTPException(status_code=500, detail="CRON_SECRET is not configured")
        return

    auth_header = request.headers.get("authorization")
    scheme, param = get_authorization_scheme_param(auth_header)
    if scheme.lower() != "bearer" or not param:
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not secrets.compare_digest(param, expected):
        logger.warning("auth.cron.rejected path=%s", request.url.path)
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
