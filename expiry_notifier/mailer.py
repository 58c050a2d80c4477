"""Mail channels used to deliver the daily digest."""

import logging
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import MailConfig
from .models import MailMessage

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 30


class Mailer(ABC):
    """Abstract base class for mail channels."""

    @abstractmethod
    def send(self, mail: MailMessage) -> bool:
        """
        Send a message.

        Args:
            mail: Message with sender, recipient, subject, HTML and text bodies.

        Returns:
            True on success, False if the transport refused the message.
        """
        pass


def build_mime(mail: MailMessage) -> MIMEMultipart:
    """Build a multipart/alternative message with text and HTML parts."""
    msg = MIMEMultipart("alternative")
    msg["From"] = mail.sender
    msg["To"] = mail.to
    msg["Subject"] = mail.subject
    msg.attach(MIMEText(mail.text, "plain", "utf-8"))
    msg.attach(MIMEText(mail.html, "html", "utf-8"))
    return msg


class SmtpMailer(Mailer):
    """Sends mail through an SMTP server (STARTTLS on 587, implicit TLS on 465)."""

    def __init__(self, config: MailConfig):
        self.config = config

    def send(self, mail: MailMessage) -> bool:
        host = self.config.host
        port = self.config.port
        msg = build_mime(mail)

        try:
            logger.debug(f"Connecting to SMTP server: {host}:{port}")
            implicit_tls = port == 465 or self.config.use_ssl
            if implicit_tls:
                server = smtplib.SMTP_SSL(host, port, timeout=SMTP_TIMEOUT_SECONDS)
            else:
                server = smtplib.SMTP(host, port, timeout=SMTP_TIMEOUT_SECONDS)

            try:
                if not implicit_tls:
                    server.starttls()
                if self.config.username:
                    logger.debug("Attempting SMTP login...")
                    server.login(self.config.username, self.config.password or "")
                server.send_message(msg)
            finally:
                server.quit()

            logger.info(f"Email sent successfully to {mail.to}")
            logger.debug(f"Subject: {mail.subject}")
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                f"SMTP authentication failed for {self.config.username}. "
                f"For Gmail use an App Password, not your regular password. "
                f"Error details: {e}"
            )
            return False
        except (smtplib.SMTPException, ConnectionError, TimeoutError, OSError) as e:
            logger.error(f"Failed to send email: {e}")
            return False


class SesMailer(Mailer):
    """Sends mail through AWS SES."""

    def __init__(self, client: Optional[Any] = None, region_name: Optional[str] = None):
        self.client = client or boto3.client("ses", region_name=region_name)

    def send(self, mail: MailMessage) -> bool:
        try:
            response = self.client.send_email(
                Source=mail.sender,
                Destination={"ToAddresses": [mail.to]},
                Message={
                    "Subject": {"Data": mail.subject, "Charset": "UTF-8"},
                    "Body": {
                        "Text": {"Data": mail.text, "Charset": "UTF-8"},
                        "Html": {"Data": mail.html, "Charset": "UTF-8"},
                    },
                },
            )
            logger.info(f"Email sent to {mail.to}: {response['MessageId']}")
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error sending email: {e}")
            return False
