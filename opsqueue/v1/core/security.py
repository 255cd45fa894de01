import hmac

from fastapi import Depends, Header

from opsqueue.config.settings import Settings, get_settings
from opsqueue.v1.core.exceptions import UnauthorizedError


async def require_trigger_auth(
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Dependency guarding the trigger endpoints.

    When CRON_SECRET is unset (development) every caller is accepted.
    Otherwise the request must carry ``Authorization: Bearer <secret>``.
    """
    if not settings.cron_secret:
        return

    expected = f"Bearer {settings.cron_secret}"
    if authorization is None or not hmac.compare_digest(authorization, expected):
        raise UnauthorizedError("Invalid or missing trigger credentials")


# Convenience type alias for dependency injection
TriggerAuthDep = Depends(require_trigger_auth)
