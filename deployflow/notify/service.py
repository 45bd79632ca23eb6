"""Failure notification over email."""

import logging
import smtplib
import uuid
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

from ..config.environment import EnvironmentContext
from ..pipeline.run import Run, RunStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    """Failure notification for one run."""

    job_name: str
    build_number: int
    build_url: str
    failing_stage: str
    recipient: str
    console_log: str = ""
    reason: Optional[str] = None

    @property
    def subject(self) -> str:
        return f"[FAILURE] {self.job_name} #{self.build_number} failed at {self.failing_stage}"

    @property
    def body(self) -> str:
        lines = [
            f"Job: {self.job_name}",
            f"Build: #{self.build_number}",
            f"Build URL: {self.build_url}",
            f"Failing stage: {self.failing_stage}",
        ]
        if self.reason:
            lines.append(f"Reason: {self.reason}")
        if self.console_log:
            lines.append(f"Console log: {self.console_log}")
        return "\n".join(lines) + "\n"


class EmailSender:
    """Sends notification events through an SMTP server."""

    def __init__(
        self,
        smtp_host: str,
        from_address: str,
        smtp_port: int = 25,
        use_tls: bool = False,
        use_ssl: bool = False,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 30,
    ):
        self.smtp_host = smtp_host
        self.from_address = from_address
        self.smtp_port = smtp_port
        self.use_tls = use_tls
        self.use_ssl = use_ssl
        self.username = username
        self.password = password
        self.timeout = timeout

    def _build_email(self, event: NotificationEvent) -> MIMEMultipart:
        email = MIMEMultipart()
        email["Subject"] = event.subject
        email["From"] = self.from_address
        email["To"] = event.recipient
        email["Message-ID"] = f"<{uuid.uuid4()}@{self.smtp_host}>"
        email.attach(MIMEText(event.body, "plain"))
        return email

    def send(self, event: NotificationEvent) -> str:
        """Deliver ``event``; SMTP and socket errors propagate to the caller."""
        email = self._build_email(event)

        server: smtplib.SMTP
        if self.use_ssl:
            server = smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, timeout=self.timeout)
        else:
            server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout)

        try:
            if self.use_tls and not self.use_ssl:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.sendmail(self.from_address, [event.recipient], email.as_string())
        finally:
            try:
                server.quit()
            except smtplib.SMTPException:
                pass

        return email["Message-ID"]

    @classmethod
    def from_config(cls, config: Dict[str, Any], password: Optional[str] = None) -> "EmailSender":
        return cls(
            smtp_host=config.get("smtp_host", "localhost"),
            from_address=config.get("from_address", "deployflow@localhost"),
            smtp_port=int(config.get("smtp_port", 25)),
            use_tls=config.get("use_tls", False),
            use_ssl=config.get("use_ssl", False),
            username=config.get("username"),
            password=password,
            timeout=float(config.get("timeout", 30)),
        )


class NotificationService:
    """Composes and sends the failure notification of a run.

    Intended to be registered as a ``failure`` post hook. Delivery is
    fire-and-forget: errors are logged, never retried and never raised.

    Parameters
    ----------
    sender : object
        Anything with a ``send(event)`` method, usually an EmailSender
    default_recipient : str, optional
        Used when the run has no resolved context (configuration failure)
    """

    def __init__(self, sender, default_recipient: Optional[str] = None):
        self.sender = sender
        self.default_recipient = default_recipient
        self.sent: List[NotificationEvent] = []

    def compose(
        self, run: Run, context: Optional[EnvironmentContext] = None
    ) -> NotificationEvent:
        if run.status is not RunStatus.FAILURE:
            raise ValueError(
                f"Notifications are only composed for failed runs, not {run.status.value}"
            )
        recipient = context.notify_recipient if context else self.default_recipient
        if not recipient:
            raise ValueError("No notification recipient configured")

        failing = run.failing_stage
        return NotificationEvent(
            job_name=run.job_name,
            build_number=run.build_number,
            build_url=run.build_url or "",
            failing_stage=failing.stage_name if failing else "(none)",
            recipient=recipient,
            console_log=str(run.console_log) if run.console_log else "",
            reason=failing.error if failing else run.failure_reason,
        )

    def notify(
        self, run: Run, context: Optional[EnvironmentContext] = None
    ) -> Optional[NotificationEvent]:
        """Send the failure notification for ``run``; never raises."""
        try:
            event = self.compose(run, context)
        except ValueError as e:
            logger.warning(f"Notification skipped: {e}")
            return None

        try:
            self.sender.send(event)
        except Exception as e:
            logger.error(f"Notification to {event.recipient} failed: {e}")
            return None

        self.sent.append(event)
        logger.info(f"Failure notification sent to {event.recipient}")
        return event
