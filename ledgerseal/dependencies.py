"""
LedgerSeal - FastAPI Dependencies

Shared dependencies for database sessions and the acting tenant/user.

Authentication happens upstream (API gateway or identity proxy); the
verified identity reaches this service as X-Tenant-ID / X-User-ID headers.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, Request

from ledgerseal.context import ActorContext
from ledgerseal.utils.error_handling import AuthenticationException, ValidationException


def _parse_uuid(value: str, header: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise ValidationException(f"{header} must be a UUID", field=header)


async def get_actor_context(
    request: Request,
    x_tenant_id: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
    user_agent: Optional[str] = Header(None),
) -> ActorContext:
    """
    Build the actor context for the current request.

    Raises:
        AuthenticationException: If no tenant header is present
    """
    if not x_tenant_id:
        raise AuthenticationException("X-Tenant-ID header is required")

    return ActorContext(
        tenant_id=_parse_uuid(x_tenant_id, "X-Tenant-ID"),
        user_id=_parse_uuid(x_user_id, "X-User-ID") if x_user_id else None,
        ip_address=request.client.host if request.client else None,
        user_agent=user_agent,
    )


async def get_tenant_id(actor: ActorContext = Depends(get_actor_context)) -> uuid.UUID:
    return actor.tenant_id
