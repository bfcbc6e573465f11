"""OAuth connect flow: consent redirect and callback for Gmail and Microsoft 365."""

from typing import Annotated
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse

from mailbridge.api.v1.dependencies import get_email_account_service, get_tenant_id
from mailbridge.core.config import get_settings
from mailbridge.domain.enums import Provider
from mailbridge.domain.exceptions import MailBridgeException
from mailbridge.infrastructure.services.email_account_service import EmailAccountService
from mailbridge.shared.telemetry.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

STATE_COOKIE_NAME = "mailbridge_oauth_state"
STATE_COOKIE_PATH = "/api/v1/email/oauth"


def _frontend_redirect(**query: str) -> RedirectResponse:
    settings = get_settings()
    url = f"{settings.frontend_base_url.rstrip('/')}/account?{urlencode(query)}"
    response = RedirectResponse(url, status_code=302)
    response.delete_cookie(STATE_COOKIE_NAME, path=STATE_COOKIE_PATH)
    return response


@router.get("/oauth/{provider}/start")
async def oauth_start(
    provider: Provider,
    tenant_id: Annotated[str, Depends(get_tenant_id)],
    service: Annotated[EmailAccountService, Depends(get_email_account_service)],
) -> RedirectResponse:
    """Redirect to the provider consent screen with a signed state cookie."""
    settings = get_settings()
    url, state = await service.start_authorization(provider, tenant_id)
    response = RedirectResponse(url, status_code=302)
    response.set_cookie(
        STATE_COOKIE_NAME,
        state,
        max_age=settings.oauth_state_cookie_max_age,
        httponly=True,
        secure=settings.app_base_url.startswith("https"),
        samesite="lax",
        path=STATE_COOKIE_PATH,
    )
    return response


@router.get("/oauth/{provider}/callback")
async def oauth_callback(
    request: Request,
    provider: Provider,
    service: Annotated[EmailAccountService, Depends(get_email_account_service)],
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
) -> RedirectResponse:
    """Finish the connect flow and send the browser back to the account page."""
    try:
        tenant_id = service.verify_state(state, request.cookies.get(STATE_COOKIE_NAME))
    except ValueError:
        logger.warning("OAuth callback for %s rejected: state mismatch", provider.value)
        return _frontend_redirect(email_error="state_mismatch")
    if error:
        logger.info("OAuth callback for %s returned error=%s", provider.value, error)
        return _frontend_redirect(email_error="oauth_error")
    if not code:
        return _frontend_redirect(email_error="missing_code")

    try:
        await service.complete_authorization(provider, tenant_id, code)
    except (MailBridgeException, httpx.HTTPError) as e:
        logger.error("OAuth token exchange for %s failed: %s", provider.value, e)
        return _frontend_redirect(email_error="token_exchange_failed")
    return _frontend_redirect(email_connected=provider.value)
