"""Application use cases: one entry point per workflow."""

from mailbridge.application.use_cases.email import (
    IngestionDispatcher,
    OutboundSender,
    RedriveSweep,
    Watchdog,
)

__all__ = [
    "IngestionDispatcher",
    "OutboundSender",
    "RedriveSweep",
    "Watchdog",
]
