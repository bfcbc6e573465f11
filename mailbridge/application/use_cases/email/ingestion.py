"""Ingestion use case: push callbacks -> ledger claims -> fetch -> downstream consumer.

Claiming is split from processing so the HTTP handler can acknowledge the
provider as soon as claims are recorded and fetch/forward in the background.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
from typing import Any

from mailbridge.application.dtos.email import (
    ClaimedMessage,
    GmailPushNotification,
    IngestionSummary,
)
from mailbridge.application.interfaces.repositories import (
    IEmailAccountRepository,
    IEmailEventRepository,
)
from mailbridge.application.interfaces.services import (
    IDownstreamConsumer,
    IMailProviderRegistry,
)
from mailbridge.application.services.connection_status import classify_auth_failure
from mailbridge.domain.enums import Provider
from mailbridge.domain.exceptions import (
    HistoryCursorExpired,
    MailBridgeException,
    ValidationException,
)
from mailbridge.shared.telemetry.logging import get_logger
from mailbridge.shared.telemetry.tracing import add_span_attributes, traced
from mailbridge.shared.utils.datetime import utc_now

logger = get_logger(__name__)


def _matches_secret(candidate: str | None, expected: str | None) -> bool:
    """Constant-time comparison; an unconfigured secret accepts everything."""
    if not expected:
        return True
    if not candidate:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def decode_pubsub_message(body: dict[str, Any]) -> GmailPushNotification | None:
    """Decode a Pub/Sub push envelope into a Gmail notification.

    Returns None when the envelope carries no data or the data lacks
    emailAddress/historyId (nothing to do).

    Raises:
        ValidationException: If message.data is not base64-encoded JSON.
    """
    message = body.get("message") if isinstance(body, dict) else None
    data = message.get("data") if isinstance(message, dict) else None
    if not data:
        return None
    try:
        padded = data + "=" * (-len(data) % 4)
        decoded = json.loads(base64.b64decode(padded).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise ValidationException("Invalid Pub/Sub message data", "message.data") from e
    if not isinstance(decoded, dict):
        raise ValidationException("Invalid Pub/Sub message data", "message.data")
    email_address = decoded.get("emailAddress")
    history_id = decoded.get("historyId")
    if not email_address or not history_id:
        return None
    return GmailPushNotification(
        email_address=str(email_address), history_id=str(history_id)
    )


class IngestionDispatcher:
    """Turns provider push notifications into claimed ledger rows and processes them."""

    def __init__(
        self,
        account_repo: IEmailAccountRepository,
        event_repo: IEmailEventRepository,
        providers: IMailProviderRegistry,
        consumer: IDownstreamConsumer,
        *,
        gmail_verification_token: str | None = None,
        microsoft_client_state: str | None = None,
    ) -> None:
        self.account_repo = account_repo
        self.event_repo = event_repo
        self.providers = providers
        self.consumer = consumer
        self._gmail_verification_token = gmail_verification_token
        self._microsoft_client_state = microsoft_client_state

    def verify_gmail_token(self, token: str | None) -> bool:
        return _matches_secret(token, self._gmail_verification_token)

    def verify_client_state(self, client_state: str | None) -> bool:
        return _matches_secret(client_state, self._microsoft_client_state)

    @traced("ingestion.claim_gmail")
    async def claim_gmail_notification(
        self, notification: GmailPushNotification
    ) -> list[ClaimedMessage]:
        """Read the history delta for the mailbox and claim every new message.

        The cursor advances only after all ids are claimed. On an expired
        cursor it is reset to the notification's history id; on any other
        failure it is left alone so the next push re-reads the same range.
        """
        account = await self.account_repo.find_connected_by_address(
            Provider.GOOGLE.value, notification.email_address
        )
        if account is None:
            logger.info(
                "Gmail push for unknown or disconnected mailbox %s",
                notification.email_address,
            )
            return []

        await self.account_repo.record_push(account.id)

        if not account.gmail_history_id:
            await self.account_repo.set_history_id(account.id, notification.history_id)
            logger.info("Seeded Gmail history cursor for account %s", account.id)
            return []

        try:
            delta = await self.providers.gmail().list_new_message_ids(
                account, account.gmail_history_id
            )
        except HistoryCursorExpired as e:
            logger.warning(
                "Gmail history cursor expired for account %s; resetting to %s",
                account.id,
                notification.history_id,
            )
            await self.account_repo.set_history_id(account.id, notification.history_id)
            await self.account_repo.record_error(account.id, e.message)
            return []
        except MailBridgeException as e:
            logger.warning(
                "Gmail history read failed for account %s: %s", account.id, e.message
            )
            await self.account_repo.record_error(
                account.id, e.message, classify_auth_failure(e.message)
            )
            return []
        except Exception as e:
            logger.exception(
                "Unexpected error reading Gmail history for account %s", account.id
            )
            await self.account_repo.record_error(account.id, str(e) or type(e).__name__)
            return []

        claims: list[ClaimedMessage] = []
        for message_id in delta.message_ids:
            claim = await self.event_repo.init_inbound_event(
                account,
                message_id,
                utc_now(),
                delta.thread_ids.get(message_id),
            )
            if claim.should_process:
                claims.append(ClaimedMessage(account.id, claim.event_id, message_id))

        await self.account_repo.set_history_id(account.id, delta.next_cursor)
        add_span_attributes(account_id=account.id, claimed=len(claims))
        logger.info(
            "Gmail history for account %s: %d new, %d claimed",
            account.id,
            len(delta.message_ids),
            len(claims),
        )
        return claims

    @traced("ingestion.claim_microsoft")
    async def claim_microsoft_notifications(
        self, notifications: list[dict[str, Any]]
    ) -> list[ClaimedMessage]:
        """Claim the message referenced by each Graph change notification.

        Notifications with a wrong clientState are skipped without any write.
        """
        claims: list[ClaimedMessage] = []
        rejected = 0
        for notification in notifications:
            if not isinstance(notification, dict):
                continue
            if not self.verify_client_state(notification.get("clientState")):
                rejected += 1
                continue
            subscription_id = notification.get("subscriptionId")
            resource_data = notification.get("resourceData") or {}
            message_id = resource_data.get("id") if isinstance(resource_data, dict) else None
            if not subscription_id or not message_id:
                continue

            account = await self.account_repo.find_by_subscription_id(subscription_id)
            if account is None:
                logger.info("Graph notification for unknown subscription %s", subscription_id)
                continue

            await self.account_repo.record_push(account.id)
            claim = await self.event_repo.init_inbound_event(account, message_id, utc_now())
            if claim.should_process:
                claims.append(ClaimedMessage(account.id, claim.event_id, message_id))

        if rejected:
            logger.warning("Rejected %d Graph notification(s) with invalid clientState", rejected)
        return claims

    async def process_claim(self, claim: ClaimedMessage) -> bool:
        """Fetch, forward and mark one claimed message. Returns True on success."""
        account = await self.account_repo.get_by_id(claim.account_id)
        if account is None:
            await self.event_repo.mark_error(claim.event_id, "Account not found")
            return False
        try:
            provider = self.providers.for_account(account)
            message = await provider.fetch_message(account, claim.provider_message_id)
            await self.event_repo.mark_processing(claim.event_id, message)
            await self.consumer.deliver(message.to_payload(account.id, account.provider))
            extra = (
                {"internet_message_id": message.internet_message_id}
                if message.internet_message_id
                else None
            )
            await self.event_repo.mark_processed(claim.event_id, extra)
            await self.account_repo.record_success(account.id)
            return True
        except MailBridgeException as e:
            logger.warning(
                "Processing %s for account %s failed: %s",
                claim.provider_message_id,
                account.id,
                e.message,
            )
            await self.event_repo.mark_error(claim.event_id, e.message)
            return False
        except Exception as e:
            logger.exception(
                "Unexpected error processing %s for account %s",
                claim.provider_message_id,
                account.id,
            )
            await self.event_repo.mark_error(claim.event_id, str(e) or type(e).__name__)
            return False

    async def process_batch(self, claims: list[ClaimedMessage]) -> IngestionSummary:
        """Process claims one at a time; a failing message does not stop the batch."""
        summary = IngestionSummary(claimed=len(claims))
        for claim in claims:
            if await self.process_claim(claim):
                summary.processed += 1
            else:
                summary.failed += 1
        return summary
