"""Check-in confirmation notifications.

No mail transport is wired up: the confirmation is written to the log the
way a front-desk mailer would format it. Callers treat any exception from
:meth:`ConfirmationNotifier.send` as a failed attempt.
"""

import logging
from datetime import datetime

from checkin.config import FACILITY_NAME, NOTIFICATIONS_ENABLED
from checkin.models.completion import Completion
from checkin.models.patient import Patient

logger = logging.getLogger(__name__)


class NotificationError(RuntimeError):
    pass


class ConfirmationNotifier:
    def __init__(self, enabled: bool | None = None) -> None:
        self.enabled = NOTIFICATIONS_ENABLED if enabled is None else enabled

    def render(self, patient: Patient, completion: Completion) -> tuple[str, str]:
        subject = f"Check-in Complete - {patient.full_name}"
        completed_at = datetime.fromisoformat(completion.completed_at).strftime("%Y-%m-%d %H:%M %Z")
        body = "\n".join([
            f"Dear {patient.first_name},",
            "",
            "Your appointment check-in has been completed successfully!",
            "",
            "Summary:",
            f"- Patient: {patient.full_name}",
            f"- Check-in completed at: {completed_at}",
            f"- Estimated wait time: {completion.estimated_wait_time} minutes",
            "",
            "Please have a seat in the waiting area. You will be called when it's time for your appointment.",
            "",
            "If you have any questions, please speak with the front desk staff.",
            "",
            f"Thank you for choosing {FACILITY_NAME}.",
        ])
        return subject, body

    async def send(self, patient: Patient, completion: Completion) -> None:
        if not self.enabled:
            raise NotificationError("Notifications are disabled")
        subject, body = self.render(patient, completion)
        logger.info("=== EMAIL CONFIRMATION ===\nTo: %s\nSubject: %s\n\n%s", patient.email, subject, body)


_notifier = ConfirmationNotifier()


def get_notifier() -> ConfirmationNotifier:
    """FastAPI dependency returning the confirmation notifier."""
    return _notifier
