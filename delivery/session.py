"""
SMTP submission session.

A MailSession is one STARTTLS-upgraded, authenticated connection that
carries many messages. SMTP is sequential per connection, so a session
must only ever be driven from one thread at a time.
"""

import smtplib
import ssl
from email.errors import MessageError
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid, parseaddr
from typing import Optional
import structlog

logger = structlog.get_logger()

# 421: server is closing the transmission channel
SESSION_CLOSING_CODES = frozenset({421})


class MailError(Exception):
    """Base class for mail delivery failures."""


class SessionError(MailError):
    """The session could not be established."""


class SessionDropped(MailError):
    """The connection was lost while the session was in use."""


class DeliveryError(MailError):
    """A single message could not be delivered; the session is still usable."""


def _decode(smtp_error) -> str:
    if isinstance(smtp_error, bytes):
        return smtp_error.decode("utf-8", "replace")
    return str(smtp_error)


class MailSession:
    """
    One authenticated SMTP submission session.

    Usage:
        with MailSession("smtp.example.com", user=..., password=...) as session:
            session.send("a@example.com", "Subject", "<p>body</p>")
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        sender: str = "",
        timeout: float = 30.0,
        smtp_factory=smtplib.SMTP,
        tls_context: Optional[ssl.SSLContext] = None,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user
        self.timeout = timeout
        self._smtp_factory = smtp_factory
        self._tls_context = tls_context
        self._smtp = None

    @classmethod
    def from_config(cls, config, **kwargs) -> "MailSession":
        """Build a session from an EmailConfig section."""
        return cls(
            host=config.domain,
            port=config.port,
            user=config.user,
            password=config.password,
            sender=config.from_address,
            timeout=config.timeout,
            **kwargs
        )

    @property
    def is_open(self) -> bool:
        return self._smtp is not None

    def open(self) -> "MailSession":
        """Connect in plaintext, upgrade with STARTTLS, then log in."""
        if self._smtp is not None:
            return self

        try:
            smtp = self._smtp_factory(self.host, self.port, timeout=self.timeout)
        except OSError as e:
            raise SessionError(f"Cannot connect to {self.host}:{self.port}: {e}") from e

        try:
            smtp.ehlo()
            smtp.starttls(context=self._tls_context or ssl.create_default_context())
            smtp.ehlo()
            smtp.login(self.user, self.password)
        except smtplib.SMTPAuthenticationError as e:
            smtp.close()
            raise SessionError(
                f"Authentication failed for {self.user}: {e.smtp_code} {_decode(e.smtp_error)}"
            ) from e
        except smtplib.SMTPNotSupportedError as e:
            smtp.close()
            raise SessionError(f"{self.host} does not support STARTTLS or AUTH: {e}") from e
        except OSError as e:
            # SMTPException and SSLError both derive from OSError
            smtp.close()
            raise SessionError(f"Cannot establish session with {self.host}: {e}") from e

        self._smtp = smtp
        logger.info("smtp_session_opened", host=self.host, port=self.port)
        return self

    def send(self, to: str, subject: str, html_body: str, headers: dict = None):
        """
        Send one HTML message.

        Raises:
            DeliveryError: this recipient failed; the session stays open
            SessionDropped: the connection is gone
        """
        if self._smtp is None:
            raise SessionDropped("Session is not open")

        if "\r" in to or "\n" in to or "@" not in parseaddr(to)[1]:
            raise DeliveryError(f"{to!r} is not a valid recipient address")

        try:
            message = self._build_message(to, subject, html_body, headers)
            self._smtp.send_message(message, from_addr=self.sender, to_addrs=[to])
        except smtplib.SMTPServerDisconnected as e:
            self._discard()
            raise SessionDropped(f"Server disconnected: {e}") from e
        except smtplib.SMTPRecipientsRefused as e:
            reasons = "; ".join(
                f"{code} {_decode(msg)}" for code, msg in e.recipients.values()
            )
            # smtplib has already closed the socket after a 421 to RCPT
            if any(code in SESSION_CLOSING_CODES for code, _ in e.recipients.values()):
                self._discard()
                raise SessionDropped(f"Recipient refused: {reasons}") from e
            raise DeliveryError(f"Recipient refused: {reasons}") from e
        except smtplib.SMTPResponseException as e:
            if e.smtp_code in SESSION_CLOSING_CODES:
                self._discard()
                raise SessionDropped(f"{e.smtp_code} {_decode(e.smtp_error)}") from e
            raise DeliveryError(f"{e.smtp_code} {_decode(e.smtp_error)}") from e
        except smtplib.SMTPException as e:
            raise DeliveryError(str(e)) from e
        except (MessageError, ValueError) as e:
            raise DeliveryError(f"Cannot build message for {to!r}: {e}") from e
        except OSError as e:
            self._discard()
            raise SessionDropped(f"Connection error: {e}") from e

    def _build_message(self, to: str, subject: str, html_body: str, headers: dict = None):
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = to
        message["Date"] = formatdate(localtime=True)
        message["Message-ID"] = make_msgid(domain=self.sender.partition("@")[2] or None)
        for name, value in (headers or {}).items():
            message[name] = value
        message.attach(MIMEText(html_body, "html", "utf-8"))
        return message

    def _discard(self):
        """Drop a broken connection without the QUIT handshake."""
        if self._smtp is not None:
            self._smtp.close()
            self._smtp = None

    def close(self):
        """QUIT and close; safe to call on a closed or broken session."""
        if self._smtp is None:
            return
        try:
            self._smtp.quit()
        except OSError as e:
            logger.debug("smtp_quit_failed", host=self.host, error=str(e))
        finally:
            self._smtp.close()
            self._smtp = None
        logger.info("smtp_session_closed", host=self.host)

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()


def open_session(config, **kwargs) -> MailSession:
    """Open an authenticated session from an EmailConfig section."""
    return MailSession.from_config(config, **kwargs).open()
