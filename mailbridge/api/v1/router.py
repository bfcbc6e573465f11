"""API v1 router aggregation.

Includes all endpoint modules with consistent prefix and tags. All routes
use dependencies from mailbridge.api.v1.dependencies (no manual repo/service construction).
"""

from fastapi import APIRouter

from mailbridge.api.v1.endpoints import (
    accounts,
    events,
    gmail_push,
    health,
    microsoft_notify,
    oauth,
    send,
    watchdog,
)

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(gmail_push.router, prefix="/email", tags=["email-ingestion"])
api_router.include_router(
    microsoft_notify.router, prefix="/email", tags=["email-ingestion"]
)
api_router.include_router(oauth.router, prefix="/email", tags=["email-oauth"])
api_router.include_router(accounts.router, prefix="/email", tags=["email-accounts"])
api_router.include_router(send.router, prefix="/email", tags=["email-send"])
api_router.include_router(watchdog.router, prefix="/email", tags=["email-jobs"])
api_router.include_router(events.router, prefix="/email", tags=["email-jobs"])
