"""Application interfaces (ports): repository and service protocols.

Define contracts for infrastructure implementations (DIP).
No runtime imports from mailbridge.infrastructure.
"""

from mailbridge.application.interfaces.repositories import (
    IEmailAccountRepository,
    IEmailEventRepository,
)
from mailbridge.application.interfaces.services import (
    IDownstreamConsumer,
    IGmailHistoryReader,
    IMailProviderRegistry,
)

__all__ = [
    "IDownstreamConsumer",
    "IEmailAccountRepository",
    "IEmailEventRepository",
    "IGmailHistoryReader",
    "IMailProviderRegistry",
]
