"""
Appointment email notifications over SMTP.

Delivery is best effort: every ``send_*`` method reports success as a bool
and never raises, so a mail outage cannot undo a booking.
"""

import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from typing import Callable, Optional

from agenda.core import config
from agenda.models.appointment import Appointment

logger = logging.getLogger(__name__)


class NotificationGateway:
    def send_booking_confirmation(self, appointment: Appointment) -> bool:
        raise NotImplementedError

    def send_cancellation_notice(self, appointment: Appointment) -> bool:
        raise NotImplementedError


class SmtpNotificationGateway(NotificationGateway):
    def __init__(
        self,
        resolve_email: Callable[[int], Optional[str]],
        host: str = config.SMTP_HOST,
        port: int = config.SMTP_PORT,
        username: str = config.SMTP_USERNAME,
        password: str = config.SMTP_PASSWORD,
        use_tls: bool = config.SMTP_USE_TLS,
        from_address: str = config.EMAIL_FROM_ADDRESS,
    ):
        self.resolve_email = resolve_email
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address

    def send_booking_confirmation(self, appointment: Appointment) -> bool:
        lines = [
            f"Your appointment has been booked for {appointment.start_datetime:%Y-%m-%d %H:%M}.",
            f"Duration: {appointment.duration_minutes} minutes.",
            f"Modality: {appointment.modality}.",
        ]
        if appointment.virtual_link:
            lines.append(f"Join online: {appointment.virtual_link}")
        return self._send(appointment.patient_id, "Appointment confirmation", "\n".join(lines))

    def send_cancellation_notice(self, appointment: Appointment) -> bool:
        body = f"Your appointment on {appointment.start_datetime:%Y-%m-%d %H:%M} has been cancelled."
        if appointment.cancellation_reason:
            body += f"\nReason: {appointment.cancellation_reason}"
        return self._send(appointment.patient_id, "Appointment cancelled", body)

    def _send(self, user_id: int, subject: str, body: str) -> bool:
        if not self.host:
            logger.warning("SMTP_HOST is not configured; skipping '%s' email", subject)
            return False

        recipient = self.resolve_email(user_id)
        if not recipient:
            logger.warning("No email address on file for user %s; skipping '%s' email", user_id, subject)
            return False

        message = MIMEText(body, "plain", "utf-8")
        message["Subject"] = subject
        message["From"] = self.from_address
        message["To"] = recipient

        try:
            with smtplib.SMTP(self.host, self.port, timeout=config.SMTP_TIMEOUT_SECONDS) as server:
                if self.use_tls:
                    server.starttls(context=ssl.create_default_context())
                if self.username:
                    server.login(self.username, self.password)
                server.sendmail(self.from_address, [recipient], message.as_string())
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send '%s' email to %s", subject, recipient)
            return False

        logger.info("Sent '%s' email to %s", subject, recipient)
        return True
