"""
Outbound email for scheduled export delivery.
"""

import asyncio
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import List, Optional

from .logger import get_logger


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    content_type: str = "text/csv"


@dataclass
class OutgoingEmail:
    to: List[str]
    subject: str
    text: str
    attachments: List[EmailAttachment] = field(default_factory=list)


class SmtpMailer:
    """
    Sends mail through an SMTP relay.

    smtplib is blocking, so each delivery runs in a worker thread with a
    socket timeout.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        sender: str = "noreply@localhost",
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 30.0
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        self.logger = get_logger(__name__)

    def build_message(self, email: OutgoingEmail) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = ", ".join(email.to)
        message["Subject"] = email.subject
        message.set_content(email.text)

        for attachment in email.attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            message.add_attachment(
                attachment.content,
                maintype=maintype or "application",
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return message

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password or "")
            server.send_message(message)

    async def send(self, email: OutgoingEmail) -> None:
        """
        Deliver one email to all recipients.

        Raises:
            smtplib.SMTPException or OSError: On delivery failure
        """
        if not email.to:
            raise ValueError("Email has no recipients")

        message = self.build_message(email)
        await asyncio.to_thread(self._deliver, message)

        self.logger.info("Email sent", extra={
            "recipients": len(email.to),
            "subject": email.subject,
            "attachments": len(email.attachments)
        })
