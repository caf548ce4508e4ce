import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from junto.config import AppConfig, Settings, get_config, get_settings
from junto.core.database import AsyncSessionLocal
from junto.services.digest_dispatch import DigestDispatcher, create_dispatcher
from junto.services.stores import SQLAuditLog

# Type aliases for dependency injection
AppSettings = Annotated[Settings, Depends(get_settings)]
Config = Annotated[AppConfig, Depends(get_config)]


async def verify_cron_secret(
    settings: AppSettings,
    authorization: str | None = Header(default=None),
) -> None:
    """Require `Authorization: Bearer $CRON_SECRET` when a secret is configured."""
    if not settings.cron_secret:
        return

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(
        token.strip().encode(), settings.cron_secret.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_dispatcher(config: Config) -> DigestDispatcher:
    """Dispatcher wired to the application database."""
    return create_dispatcher(AsyncSessionLocal, config=config.scheduler)


def get_audit_log() -> SQLAuditLog:
    """Run history store on the application database."""
    return SQLAuditLog(AsyncSessionLocal)


CronAuth = Depends(verify_cron_secret)
Dispatcher = Annotated[DigestDispatcher, Depends(get_dispatcher)]
AuditLogDep = Annotated[SQLAuditLog, Depends(get_audit_log)]
