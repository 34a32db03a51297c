"""
Mail delivery for the HN digest mailer.

One STARTTLS-encrypted, authenticated SMTP session carries the whole
batch of digests for a run.
"""

from .mailer import DeliveryResult, DeliveryStatus, MailDeliveryClient, OutgoingMessage
from .session import (
    DeliveryError,
    MailError,
    MailSession,
    SessionDropped,
    SessionError,
    open_session,
)

__all__ = [
    "DeliveryError",
    "DeliveryResult",
    "DeliveryStatus",
    "MailDeliveryClient",
    "MailError",
    "MailSession",
    "OutgoingMessage",
    "SessionDropped",
    "SessionError",
    "open_session",
]
