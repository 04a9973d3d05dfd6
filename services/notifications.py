from flask import current_app

from models import db
from models.user import User
from services import timezone as tz
from utils.emailer import send_email


class Notifier:
    def notify_cancellation(self, details: dict) -> None:
        raise NotImplementedError


class EmailNotifier(Notifier):
    """E-mails the academy admin and, when assigned, the session's coach."""

    def notify_cancellation(self, details: dict) -> None:
        recipients = []
        admin_email = current_app.config.get("ADMIN_NOTIFY_EMAIL")
        if admin_email:
            recipients.append(admin_email)
        coach_id = details.get("coach_id")
        if coach_id:
            coach = db.session.get(User, coach_id)
            if coach and coach.email:
                recipients.append(coach.email)
        if not recipients:
            return

        start = details.get("start_time")
        when = tz.utc_to_local(start).strftime("%a %d %b %Y %H:%M") if start else "unknown time"
        subject = f"Booking cancelled: {details.get('location_name') or 'Unknown location'} {when}"
        body = (
            f"Student: {details.get('student_name') or 'Unknown'}\n"
            f"Location: {details.get('location_name') or 'Unknown location'}\n"
            f"Starts: {when}\n"
            f"Type: {details.get('source')}\n"
            f"Reason: {details.get('reason') or '-'}\n"
        )
        sent, error = send_email(recipients, subject, body)
        if not sent:
            current_app.logger.warning("cancellation e-mail not sent for booking %s: %s", details.get("booking_id"), error)


def get_notifier() -> Notifier:
    return current_app.extensions["notifier"]


def notify_cancellation(details: dict) -> None:
    """Fire and forget: failures are logged, never raised."""
    try:
        get_notifier().notify_cancellation(details)
    except Exception:
        current_app.logger.warning("cancellation notification failed for booking %s", details.get("booking_id"), exc_info=True)
