"""
Outbound e-mail through the Brevo transactional API.

Workflow notifications can fan out to every HEI user and every accountant,
so recipients are sent as BCC in batches and never see each other.
"""
from typing import List, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type, before_sleep_log
import logging
import structlog

from liquidation_api.config import settings

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"
BREVO_MAX_RECIPIENTS = 50

_http_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, connect=5.0),
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


class _BrevoRetryableError(Exception):
    """5xx or network failure; worth another attempt."""


def chunk_recipients(emails: List[str], size: int = BREVO_MAX_RECIPIENTS) -> List[List[str]]:
    """De-duplicate (case-insensitive, first spelling wins) and split into batches."""
    seen = set()
    unique = []
    for email in emails:
        key = email.strip().lower()
        if key and key not in seen:
            seen.add(key)
            unique.append(email.strip())
    return [unique[i:i + size] for i in range(0, len(unique), size)]


def build_payload(
    recipients: List[str],
    subject: str,
    html_content: str,
    tags: Optional[List[str]] = None,
) -> dict:
    sender = {"name": settings.APP_NAME, "email": settings.EMAIL_FROM_ADDRESS}
    payload = {
        "sender": sender,
        # Brevo requires at least one "to"; the sender mailbox receives the copy
        "to": [sender],
        "bcc": [{"email": email} for email in recipients],
        "subject": subject,
        "htmlContent": html_content,
    }
    if tags:
        payload["tags"] = tags
    return payload


@retry(
    retry=retry_if_exception_type(_BrevoRetryableError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    before_sleep=before_sleep_log(_std_logger, logging.WARNING),
    reraise=True,
)
async def _post_batch(headers: dict, payload: dict) -> bool:
    client = get_http_client()
    batch_size = len(payload["bcc"])
    try:
        response = await client.post(BREVO_API_URL, headers=headers, json=payload)
    except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
        logger.warning("email_network_error_retrying", error=str(exc), recipients=batch_size)
        raise _BrevoRetryableError(str(exc)) from exc

    if response.status_code in (201, 202):
        logger.info(
            "email_batch_sent",
            recipients=batch_size,
            subject=payload["subject"],
            message_id=response.json().get("messageId"),
        )
        return True

    if response.status_code >= 500:
        logger.warning("email_brevo_5xx_retrying", status_code=response.status_code)
        raise _BrevoRetryableError(f"Brevo returned {response.status_code}")

    # 4xx: bad key or payload, retrying cannot help
    logger.error(
        "email_batch_rejected",
        status_code=response.status_code,
        response=response.text[:500],
        recipients=batch_size,
        subject=payload["subject"],
    )
    return False


async def send_email(
    to_emails: List[str],
    subject: str,
    html_content: str,
    tags: Optional[List[str]] = None,
) -> bool:
    """
    Send one message to every address, batched as BCC.

    Returns True only if every batch was accepted. Delivery problems are
    logged and reported through the return value; they never raise, since
    this runs after the workflow transaction has already committed.
    """
    if not settings.BREVO_API_KEY:
        logger.warning("brevo_api_key_missing", message="Email sending skipped")
        return False

    batches = chunk_recipients(to_emails, BREVO_MAX_RECIPIENTS)
    if not batches:
        logger.warning("email_no_recipients", subject=subject)
        return False

    headers = {
        "accept": "application/json",
        "api-key": settings.BREVO_API_KEY,
        "content-type": "application/json",
    }

    all_sent = True
    for batch in batches:
        payload = build_payload(batch, subject, html_content, tags)
        try:
            sent = await _post_batch(headers, payload)
        except _BrevoRetryableError as exc:
            logger.error(
                "email_all_retries_exhausted",
                error=str(exc),
                recipients=len(batch),
                subject=subject,
            )
            sent = False
        all_sent = all_sent and sent
    return all_sent
