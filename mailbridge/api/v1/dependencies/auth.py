"""Caller authentication dependencies.

Interactive callers present a bearer JWT carrying tenant_id. Schedulers
and internal services present X-Internal-Token.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from mailbridge.core.config import get_settings
from mailbridge.infrastructure.security.jwt import tenant_from_token

_http_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    """Authenticated caller. tenant_id is None for internal callers."""

    internal: bool
    tenant_id: str | None = None

    def may_act_for(self, tenant_id: str) -> bool:
        return self.internal or self.tenant_id == tenant_id


def _internal_token_valid(token: str | None) -> bool:
    """An unset INTERNAL_JOBS_TOKEN rejects every internal call."""
    expected = get_settings().internal_jobs_token
    if expected is None or not expected.get_secret_value() or not token:
        return False
    return hmac.compare_digest(
        token.encode("utf-8"), expected.get_secret_value().encode("utf-8")
    )


async def get_tenant_id_optional(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_http_bearer)],
) -> str | None:
    """Return tenant from bearer JWT if present and valid; else None."""
    if not credentials:
        return None
    try:
        return tenant_from_token(credentials.credentials)
    except ValueError:
        return None


async def get_tenant_id(
    tenant_id: Annotated[str | None, Depends(get_tenant_id_optional)],
) -> str:
    """Return tenant from bearer JWT; raise 401 if missing or invalid."""
    if tenant_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return tenant_id


async def require_internal_token(
    x_internal_token: Annotated[str | None, Header()] = None,
) -> None:
    """Raise 401 unless X-Internal-Token matches INTERNAL_JOBS_TOKEN."""
    if not _internal_token_valid(x_internal_token):
        raise HTTPException(status_code=401, detail="unauthorized")


async def get_caller(
    tenant_id: Annotated[str | None, Depends(get_tenant_id_optional)],
    x_internal_token: Annotated[str | None, Header()] = None,
) -> Caller:
    """Accept either an internal token or a bearer JWT; raise 401 otherwise."""
    if x_internal_token is not None and _internal_token_valid(x_internal_token):
        return Caller(internal=True)
    if tenant_id is not None:
        return Caller(internal=False, tenant_id=tenant_id)
    raise HTTPException(status_code=401, detail="unauthorized")
