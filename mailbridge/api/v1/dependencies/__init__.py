"""Presentation-layer dependency injection (composition root).

Provides FastAPI Depends() for repositories, adapters and use cases.
All use cases are built from infrastructure implementations here;
routes depend only on these dependencies, not on infra directly.
"""

from .auth import (
    Caller,
    get_caller,
    get_tenant_id,
    get_tenant_id_optional,
    require_internal_token,
)
from .db import get_db_session_factory, get_email_account_repo, get_email_event_repo
from .email import (
    get_credential_vault,
    get_downstream_consumer,
    get_email_account_service,
    get_http_client,
    get_ingestion_dispatcher,
    get_mail_provider_factory,
    get_oauth_driver_registry,
    get_oauth_state_manager,
    get_outbound_sender,
    get_redrive_sweep,
    get_token_manager,
    get_watchdog,
)

__all__ = [
    "Caller",
    "get_caller",
    "get_credential_vault",
    "get_db_session_factory",
    "get_downstream_consumer",
    "get_email_account_repo",
    "get_email_account_service",
    "get_email_event_repo",
    "get_http_client",
    "get_ingestion_dispatcher",
    "get_mail_provider_factory",
    "get_oauth_driver_registry",
    "get_oauth_state_manager",
    "get_outbound_sender",
    "get_redrive_sweep",
    "get_tenant_id",
    "get_tenant_id_optional",
    "get_token_manager",
    "get_watchdog",
    "require_internal_token",
]
