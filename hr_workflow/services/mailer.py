import logging

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from hr_workflow.core.config import settings
from hr_workflow.core.logging import request_id_var

logger = logging.getLogger(__name__)


class MailNotConfigured(RuntimeError):
    pass


def _post(payload: dict, headers: dict) -> None:
    response = requests.post(
        settings.mail.webhook_url,
        json=payload,
        headers=headers,
        timeout=settings.mail.timeout,
    )
    response.raise_for_status()


def send_notification_email(to: str, subject: str, body: str) -> None:
    """
    Push one notification to the outbound mail webhook.

    Retries transport errors and non-2xx responses with exponential backoff,
    then re-raises the last error.

    Raises:
        MailNotConfigured: If MAIL_WEBHOOK_URL is not set.
        requests.RequestException: If every attempt failed.
    """
    mail = settings.mail
    if not mail.enabled:
        raise MailNotConfigured("MAIL_WEBHOOK_URL is not configured")

    headers = {"Content-Type": "application/json"}
    if request_id_var.get():
        headers[settings.request_id_header] = request_id_var.get()
    if mail.api_key:
        headers["Authorization"] = f"Bearer {mail.api_key}"

    payload = {"from": mail.sender, "to": to, "subject": subject, "text": body}

    retrying = Retrying(
        stop=stop_after_attempt(mail.max_attempts),
        wait=wait_exponential(multiplier=mail.backoff_seconds, max=30),
        retry=retry_if_exception_type(requests.exceptions.RequestException),
        reraise=True,
    )
    for attempt in retrying:
        with attempt:
            logger.info(f"Sending notification mail to {to} (attempt {attempt.retry_state.attempt_number})")
            _post(payload, headers)
