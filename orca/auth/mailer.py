from abc import ABC, abstractmethod
import logging
import smtplib
from email.message import EmailMessage
from orca.config import EMAIL_USER, EMAIL_PASS, SMTP_HOST, SMTP_PORT, MAIL_SENDER_NAME

logger = logging.getLogger(__name__)


class Mailer(ABC):
    """Delivers one plain-text message; built once at startup and passed in."""

    @abstractmethod
    def send(self, to: str, subject: str, body: str) -> None:
        ...


class SmtpMailer(Mailer):
    def __init__(self, user: str, password: str, host: str = SMTP_HOST, port: int = SMTP_PORT, sender_name: str = MAIL_SENDER_NAME):
        self.user = user
        self.password = password
        self.host = host
        self.port = port
        self.sender_name = sender_name

    def send(self, to: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = f'"{self.sender_name}" <{self.user}>'
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        with smtplib.SMTP_SSL(self.host, self.port) as smtp:
            smtp.login(self.user, self.password)
            smtp.send_message(msg)
        logger.info(f"Mail sent: to={to}, subject={subject}")


class LogMailer(Mailer):
    """Development mailer: writes the message to the log instead of sending it."""

    def send(self, to: str, subject: str, body: str) -> None:
        logger.info(f"Mail (not sent, no SMTP credentials): to={to}, subject={subject}\n{body}")


def build_mailer() -> Mailer:
    if EMAIL_USER and EMAIL_PASS:
        return SmtpMailer(EMAIL_USER, EMAIL_PASS)
    logger.warning("EMAIL_USER/EMAIL_PASS not set, one-time codes will only be logged")
    return LogMailer()
