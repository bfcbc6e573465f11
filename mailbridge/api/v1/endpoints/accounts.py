"""Connected mailbox endpoints: list with health, disconnect."""

from typing import Annotated

from fastapi import APIRouter, Depends

from mailbridge.api.v1.dependencies import get_email_account_service, get_tenant_id
from mailbridge.infrastructure.services.email_account_service import (
    AccountView,
    EmailAccountService,
)
from mailbridge.schemas.email_account import (
    DisconnectRequest,
    EmailAccountListResponse,
    EmailAccountResponse,
    OkResponse,
)

router = APIRouter()


def _to_response(view: AccountView) -> EmailAccountResponse:
    account = view.account
    return EmailAccountResponse(
        id=account.id,
        tenant_id=account.tenant_id,
        provider=account.provider,
        email_address=account.email_address,
        status=account.status,
        health=view.health.value,
        last_error=account.last_error,
        last_error_at=account.last_error_at,
        last_push_at=account.last_push_at,
        last_success_at=account.last_success_at,
        watch_expires_at=account.watch_expires_at,
        created_at=account.created_at,
    )


@router.get("/accounts", response_model=EmailAccountListResponse)
async def list_accounts(
    tenant_id: Annotated[str, Depends(get_tenant_id)],
    service: Annotated[EmailAccountService, Depends(get_email_account_service)],
) -> EmailAccountListResponse:
    """List the tenant's mailboxes with stored or computed connection health."""
    views = await service.list_accounts(tenant_id)
    return EmailAccountListResponse(accounts=[_to_response(v) for v in views])


@router.post("/accounts/disconnect", response_model=OkResponse)
async def disconnect_account(
    body: DisconnectRequest,
    tenant_id: Annotated[str, Depends(get_tenant_id)],
    service: Annotated[EmailAccountService, Depends(get_email_account_service)],
) -> OkResponse:
    """Clear tokens and cursors; the row is kept with status disconnected."""
    await service.disconnect(tenant_id, body.account_id)
    return OkResponse()
