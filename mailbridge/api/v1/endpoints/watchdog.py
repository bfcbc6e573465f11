"""Watchdog trigger (called by a scheduler with X-Internal-Token)."""

from typing import Annotated

from fastapi import APIRouter, Depends

from mailbridge.api.v1.dependencies import get_watchdog, require_internal_token
from mailbridge.application.use_cases.email import Watchdog
from mailbridge.schemas.email import WatchdogResponse, WatchdogResultItem

router = APIRouter()


@router.post(
    "/watchdog",
    response_model=WatchdogResponse,
    dependencies=[Depends(require_internal_token)],
)
async def run_watchdog(
    watchdog: Annotated[Watchdog, Depends(get_watchdog)],
) -> WatchdogResponse:
    """Renew expiring watches/subscriptions and recover stale accounts."""
    results = await watchdog.run()
    return WatchdogResponse(
        total=len(results),
        results=[WatchdogResultItem(**r.to_dict()) for r in results],
    )
