"""Email composition and SMTP delivery.

``EmailSender.send`` validates the message before the transport is touched:
an empty recipient list, a blank subject or a missing body fail fast with
``ValidationFault``. Credentials are passed on every call; a successful
``test_connection`` says nothing about a later ``send``.
"""

import asyncio
import html
import logging
import smtplib
import ssl
from abc import ABC, abstractmethod
from email.message import EmailMessage
from email.utils import formataddr, make_msgid

from models.schemas import (
    Attachment,
    ConnectionResult,
    Meeting,
    OutgoingEmail,
    SendResult,
    SmtpCredentials,
)
from services.errors import AuthFault, NetworkFault, SendFault, ValidationFault

logger = logging.getLogger(__name__)


# --- Recipient helpers ---


def normalize_recipients(addresses: list[str]) -> list[str]:
    """Trim, drop blanks and de-duplicate (case-insensitive), keeping order."""
    seen: set[str] = set()
    result = []
    for address in addresses:
        address = address.strip()
        if not address or address.lower() in seen:
            continue
        seen.add(address.lower())
        result.append(address)
    return result


def parse_recipients(value: str) -> list[str]:
    """Split a comma or semicolon separated address field."""
    return normalize_recipients(value.replace(";", ",").split(","))


def html_from_text(text: str) -> str:
    return html.escape(text).replace("\n", "<br>")


def transcript_attachment(meeting: Meeting) -> Attachment | None:
    if not meeting.transcript:
        return None
    safe_title = "".join(c if c.isalnum() or c in "-_" else "_" for c in meeting.title)
    return Attachment(
        filename=f"{safe_title or 'meeting'}_transcript.txt",
        content=meeting.transcript,
        content_type="text/plain",
    )


def build_message(message: OutgoingEmail, sender: str) -> EmailMessage:
    """Build an RFC 5322 message. Bcc recipients are not written as a header."""
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = ", ".join(message.to)
    if message.cc:
        msg["Cc"] = ", ".join(message.cc)
    msg["Subject"] = message.subject
    msg["Message-ID"] = make_msgid(domain=sender.rsplit("@", 1)[-1].rstrip(">"))

    if message.text and message.html:
        msg.set_content(message.text)
        msg.add_alternative(message.html, subtype="html")
    elif message.html:
        msg.set_content(message.html, subtype="html")
    else:
        msg.set_content(message.text or "")

    for attachment in message.attachments:
        maintype, _, subtype = attachment.content_type.partition("/")
        if maintype == "text":
            msg.add_attachment(
                attachment.content, subtype=subtype or "plain", filename=attachment.filename
            )
        else:
            msg.add_attachment(
                attachment.content.encode("utf-8"),
                maintype=maintype or "application",
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
    return msg


# --- Transport ---


class MailTransport(ABC):
    """Opaque verify/send capability."""

    @abstractmethod
    async def verify(self, credentials: SmtpCredentials) -> None:
        """Raise AuthFault/NetworkFault if the credentials cannot log in."""
        ...

    @abstractmethod
    async def send(
        self, credentials: SmtpCredentials, message: EmailMessage, recipients: list[str]
    ) -> str:
        """Transmit the message and return its message id."""
        ...


class SmtpTransport(MailTransport):
    """SMTP over implicit TLS (Gmail: smtp.gmail.com:465 with an app password).

    smtplib blocks, so every session runs in a worker thread.
    """

    def __init__(self, host: str = "smtp.gmail.com", port: int = 465, timeout: float = 30.0):
        self.host = host
        self.port = port
        self.timeout = timeout

    def _connect(self, credentials: SmtpCredentials) -> smtplib.SMTP_SSL:
        context = ssl.create_default_context()
        client = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context)
        try:
            client.login(credentials.email, credentials.password)
        except BaseException:
            client.close()
            raise
        return client

    def _verify_sync(self, credentials: SmtpCredentials) -> None:
        client = self._connect(credentials)
        try:
            client.noop()
        finally:
            client.quit()

    def _send_sync(
        self, credentials: SmtpCredentials, message: EmailMessage, recipients: list[str]
    ) -> str:
        client = self._connect(credentials)
        try:
            refused = client.send_message(message, to_addrs=recipients)
        finally:
            client.quit()
        if refused:
            logger.warning(f"[EMAIL] Some recipients were refused: {sorted(refused)}")
        return message["Message-ID"]

    async def verify(self, credentials: SmtpCredentials) -> None:
        await self._run(self._verify_sync, credentials)

    async def send(
        self, credentials: SmtpCredentials, message: EmailMessage, recipients: list[str]
    ) -> str:
        return await self._run(self._send_sync, credentials, message, recipients)

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except smtplib.SMTPAuthenticationError as e:
            raise AuthFault("The mail server rejected the login. Check the address and app password.") from e
        except smtplib.SMTPRecipientsRefused as e:
            raise SendFault("All recipients were refused by the mail server") from e
        except (smtplib.SMTPConnectError, smtplib.SMTPServerDisconnected) as e:
            raise NetworkFault(f"Lost connection to mail server {self.host}:{self.port}: {e}") from e
        except smtplib.SMTPException as e:
            raise SendFault(f"Failed to send email: {e}") from e
        except OSError as e:
            raise NetworkFault(f"Could not reach mail server {self.host}:{self.port}: {e}") from e


# --- Sender ---


class EmailSender:
    """Validates outgoing mail and hands it to the transport."""

    def __init__(self, transport: MailTransport, sender_name: str = "Smart Minutes"):
        self.transport = transport
        self.sender_name = sender_name

    @staticmethod
    def _check_credentials(credentials: SmtpCredentials | None) -> SmtpCredentials:
        if credentials is None or not credentials.email.strip() or not credentials.password:
            raise ValidationFault("Mail account address and app password are required")
        return credentials

    @staticmethod
    def validate(message: OutgoingEmail) -> OutgoingEmail:
        """Return a normalized copy of ``message`` or raise ValidationFault."""
        errors = []
        to = normalize_recipients(message.to)
        if not to:
            errors.append({"field": "to", "message": "At least one recipient is required"})
        if not message.subject.strip():
            errors.append({"field": "subject", "message": "Subject is required"})
        if not (message.text and message.text.strip()) and not (
            message.html and message.html.strip()
        ):
            errors.append({"field": "text", "message": "A text or HTML body is required"})
        if errors:
            raise ValidationFault("Invalid email data", errors=errors)

        return message.model_copy(
            update={
                "to": to,
                "cc": normalize_recipients(message.cc),
                "bcc": normalize_recipients(message.bcc),
            }
        )

    async def test_connection(self, credentials: SmtpCredentials | None) -> ConnectionResult:
        credentials = self._check_credentials(credentials)
        await self.transport.verify(credentials)
        logger.info("[EMAIL] SMTP connection verified")
        return ConnectionResult(ok=True)

    async def send(
        self, message: OutgoingEmail, credentials: SmtpCredentials | None
    ) -> SendResult:
        message = self.validate(message)
        credentials = self._check_credentials(credentials)

        sender = formataddr((self.sender_name, credentials.email))
        mime = build_message(message, sender)
        recipients = [*message.to, *message.cc, *message.bcc]

        message_id = await self.transport.send(credentials, mime, recipients)
        logger.info(
            f"[EMAIL] Sent '{message.subject}' to {len(message.to)} recipient(s), "
            f"cc={len(message.cc)}, bcc={len(message.bcc)}, "
            f"attachments={len(message.attachments)}"
        )
        return SendResult(ok=True, message_id=message_id)
