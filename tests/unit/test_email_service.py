"""
Unit tests for liquidation_api/services/email_service.py
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from liquidation_api.services import email_service


def _response(status_code: int, body: dict = None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body or {}
    resp.text = "error"
    return resp


def test_chunk_recipients_dedupes_case_insensitively():
    batches = email_service.chunk_recipients(
        ["A@x.com", "a@x.com", " b@x.com ", "", "c@x.com"], size=2
    )
    assert batches == [["A@x.com", "b@x.com"], ["c@x.com"]]


def test_payload_uses_bcc_and_tags():
    payload = email_service.build_payload(["a@x.com"], "subj", "<p>x</p>", tags=["submitted"])
    assert payload["bcc"] == [{"email": "a@x.com"}]
    assert payload["to"] == [payload["sender"]]
    assert payload["tags"] == ["submitted"]


@pytest.mark.asyncio
async def test_send_skipped_without_api_key():
    with patch.object(email_service.settings, "BREVO_API_KEY", None):
        assert await email_service.send_email(["a@x.com"], "s", "h") is False


@pytest.mark.asyncio
async def test_send_posts_one_request_per_batch():
    client = MagicMock()
    client.post = AsyncMock(return_value=_response(201, {"messageId": "m1"}))

    with patch.object(email_service.settings, "BREVO_API_KEY", "key"), \
         patch.object(email_service, "BREVO_MAX_RECIPIENTS", 2), \
         patch.object(email_service, "get_http_client", return_value=client):
        sent = await email_service.send_email(
            ["a@x.com", "b@x.com", "c@x.com"], "s", "h"
        )

    assert sent is True
    assert client.post.await_count == 2


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    client = MagicMock()
    client.post = AsyncMock(return_value=_response(400))

    with patch.object(email_service.settings, "BREVO_API_KEY", "key"), \
         patch.object(email_service, "get_http_client", return_value=client):
        assert await email_service.send_email(["a@x.com"], "s", "h") is False

    assert client.post.await_count == 1


@pytest.mark.asyncio
async def test_network_error_exhausts_retries_without_raising():
    client = MagicMock()
    client.post = AsyncMock(side_effect=httpx.ConnectError("down"))

    with patch.object(email_service.settings, "BREVO_API_KEY", "key"), \
         patch.object(email_service, "get_http_client", return_value=client), \
         patch.object(email_service._post_batch.retry, "sleep", new=AsyncMock()):
        assert await email_service.send_email(["a@x.com"], "s", "h") is False

    assert client.post.await_count == 3
