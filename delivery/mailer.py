"""
Batch digest delivery over a single reused mail session.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional
import structlog

from .session import DeliveryError, MailSession, SessionDropped, SessionError

logger = structlog.get_logger()


class DeliveryStatus(str, Enum):
    """Outcome of one subscriber's digest in a run."""
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class DeliveryResult:
    email: str
    status: DeliveryStatus
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "email": self.email,
            "status": self.status.value,
            "error": self.error,
        }


@dataclass
class OutgoingMessage:
    """A rendered digest ready to be sent."""
    recipient: str
    subject: str
    html_body: str
    headers: dict = field(default_factory=dict)


class MailDeliveryClient:
    """
    Sends a batch of messages over one session.

    Per-recipient failures are recorded and the batch continues. When the
    connection drops, the client reconnects (up to `max_reconnects` times)
    and replays from the recipient that was interrupted; once it cannot
    reconnect, every untried recipient is reported as failed.
    """

    def __init__(self, config, session_factory=None):
        """
        Args:
            config: EmailConfig section
            session_factory: Callable returning an unopened MailSession
        """
        self.config = config
        self.max_reconnects = config.max_reconnects
        self._session_factory = session_factory or (lambda: MailSession.from_config(config))

    def _open_session(self) -> MailSession:
        session = self._session_factory()
        session.open()
        return session

    def deliver(self, messages: Iterable[OutgoingMessage]) -> List[DeliveryResult]:
        """
        Send every message, one at a time, on a shared session.

        Raises:
            SessionError: the initial session could not be opened
        """
        messages = list(messages)
        if not messages:
            return []

        session = self._open_session()
        results: List[DeliveryResult] = []
        reconnects = 0
        index = 0

        try:
            while index < len(messages):
                message = messages[index]
                try:
                    session.send(
                        message.recipient,
                        message.subject,
                        message.html_body,
                        message.headers
                    )
                except DeliveryError as e:
                    logger.warning("digest_send_failed", email=message.recipient, error=str(e))
                    results.append(DeliveryResult(message.recipient, DeliveryStatus.FAILED, str(e)))
                except SessionDropped as e:
                    logger.warning(
                        "smtp_session_dropped",
                        email=message.recipient,
                        attempted=index,
                        error=str(e)
                    )
                    session.close()

                    if reconnects >= self.max_reconnects:
                        results.extend(self._fail_remaining(
                            messages[index:], f"Session dropped: {e}"
                        ))
                        break

                    reconnects += 1
                    try:
                        session = self._open_session()
                    except SessionError as reconnect_error:
                        logger.error(
                            "smtp_reconnect_failed",
                            attempt=reconnects,
                            error=str(reconnect_error)
                        )
                        results.extend(self._fail_remaining(
                            messages[index:], f"Reconnect failed: {reconnect_error}"
                        ))
                        break

                    logger.info("smtp_session_reconnected", attempt=reconnects, resume_at=index)
                    # Replay the interrupted recipient on the new session
                    continue
                else:
                    logger.info("digest_sent", email=message.recipient)
                    results.append(DeliveryResult(message.recipient, DeliveryStatus.SENT))

                index += 1
        finally:
            session.close()

        return results

    def _fail_remaining(
        self,
        messages: List[OutgoingMessage],
        reason: str
    ) -> List[DeliveryResult]:
        logger.error("batch_aborted", untried=len(messages), reason=reason)
        return [
            DeliveryResult(m.recipient, DeliveryStatus.FAILED, reason)
            for m in messages
        ]
