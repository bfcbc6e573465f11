"""Re-drive use case: retry errored and stuck inbound events through the ingestion path."""

from __future__ import annotations

from mailbridge.application.dtos.email import ClaimedMessage, RedriveResult
from mailbridge.application.interfaces.repositories import IEmailEventRepository
from mailbridge.application.use_cases.email.ingestion import IngestionDispatcher
from mailbridge.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


class RedriveSweep:
    """Re-claims eligible events and processes them like fresh claims."""

    def __init__(
        self,
        event_repo: IEmailEventRepository,
        dispatcher: IngestionDispatcher,
        *,
        max_attempts: int = 5,
        batch_size: int = 50,
    ) -> None:
        self.event_repo = event_repo
        self.dispatcher = dispatcher
        self.max_attempts = max_attempts
        self.batch_size = batch_size

    async def run(self) -> list[RedriveResult]:
        candidates = await self.event_repo.list_redrivable(
            max_attempts=self.max_attempts, limit=self.batch_size
        )
        results: list[RedriveResult] = []
        for event in candidates:
            # Another worker may have claimed it since the listing.
            if not await self.event_repo.reclaim(event.id):
                results.append(
                    RedriveResult(
                        event.id, event.account_id, event.provider_message_id, "skipped"
                    )
                )
                continue
            claim = ClaimedMessage(event.account_id, event.id, event.provider_message_id or "")
            ok = await self.dispatcher.process_claim(claim)
            error = None
            if not ok:
                refreshed = await self.event_repo.get_by_id(event.id)
                error = refreshed.last_error if refreshed else None
            results.append(
                RedriveResult(
                    event.id,
                    event.account_id,
                    event.provider_message_id,
                    "processed" if ok else "error",
                    error,
                )
            )
        logger.info(
            "Re-drive finished: %d candidate(s), %d processed",
            len(results),
            sum(1 for r in results if r.status == "processed"),
        )
        return results
