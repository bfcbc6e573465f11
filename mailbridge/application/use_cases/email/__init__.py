"""Mail pipeline use cases: ingestion, outbound replies, watchdog and re-drive."""

from mailbridge.application.use_cases.email.ingestion import (
    IngestionDispatcher,
    decode_pubsub_message,
)
from mailbridge.application.use_cases.email.outbound import (
    OutboundSender,
    build_reply_subject,
)
from mailbridge.application.use_cases.email.redrive import RedriveSweep
from mailbridge.application.use_cases.email.watchdog import Watchdog

__all__ = [
    "IngestionDispatcher",
    "OutboundSender",
    "RedriveSweep",
    "Watchdog",
    "build_reply_subject",
    "decode_pubsub_message",
]
