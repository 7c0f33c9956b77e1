import logging

from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)


def _greeting(name):
    return f"Hi {name}," if name else "Hi,"


def _job_url(job_id):
    base = str(getattr(settings, "SITE_URL", "")).rstrip("/")
    return f"{base}/jobs/{job_id}"


class EmailSender:
    """Transactional emails; each method returns True when the message was handed to the backend."""

    def __init__(self, from_email=None):
        self.from_email = from_email or getattr(settings, "DEFAULT_FROM_EMAIL", None)

    def send_new_job_alert(self, email, job, name=None):
        lines = [
            _greeting(name),
            "",
            f'A new job matching your skills has been posted: "{job.title}".',
            f"Service: {job.service_type or '-'}",
            f"Location: {job.postcode or job.town or '-'}",
        ]
        if job.budget is not None:
            lines.append(f"Budget: £{job.budget}")
        lines.extend(["", f"View the job: {_job_url(job.id)}"])
        return self._send(email, f"New job available: {job.title}", "\n".join(lines))

    def send_new_quote(self, email, job_id, quote_id, name=None):
        body = "\n".join(
            [
                _greeting(name),
                "",
                "You have received a new quote for your job.",
                f"Review it here: {_job_url(job_id)}#quote-{quote_id}",
            ]
        )
        return self._send(email, "New quote received", body)

    def send_quote_accepted(self, email, job_id, quote_id, name=None):
        body = "\n".join(
            [
                _greeting(name),
                "",
                "Good news: your quote has been accepted.",
                f"Job details: {_job_url(job_id)}",
            ]
        )
        return self._send(email, "Your quote was accepted", body)

    def send_job_accepted(self, email, job_id, name=None):
        body = "\n".join(
            [
                _greeting(name),
                "",
                "You have accepted a quote and your tradesperson has been notified.",
                f"Job details: {_job_url(job_id)}",
            ]
        )
        return self._send(email, "Quote accepted for your job", body)

    def send_final_payment_request(self, email, job_id, name=None):
        body = "\n".join(
            [
                _greeting(name),
                "",
                "Your tradesperson has marked the job as complete.",
                f"Please pay the final balance: {_job_url(job_id)}",
            ]
        )
        return self._send(email, "Action Required: Pay Final Balance", body)

    def _send(self, to, subject, body):
        if not to:
            return False
        try:
            send_mail(subject, body, self.from_email, [to], fail_silently=False)
        except Exception:
            logger.exception('Email ("%s") to %s failed', subject, to)
            return False
        logger.info('Email ("%s") sent to %s', subject, to)
        return True
