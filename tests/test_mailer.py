"""
Tests for account mail delivery.
"""
import json

import httpx
import pytest

from dashboard.utils.mailer import BrevoMailer, LogMailer, Mailer, build_mailer
from shared.errors import ErrorCode, MailDeliveryError


def brevo(handler):
    return BrevoMailer("brevo-test-key", "noreply@example.com", transport=httpx.MockTransport(handler))


class TestBrevoMailer:
    """Tests for BrevoMailer.send_password_reset."""

    @pytest.mark.asyncio
    async def test_posts_reset_link(self):
        sent = []

        def handler(request):
            sent.append(request)
            return httpx.Response(201, json={"messageId": "m-1"})

        await brevo(handler).send_password_reset("person@example.com", "https://app.test/reset?token=abc")

        assert sent[0].url.path == "/v3/smtp/email"
        assert sent[0].headers["api-key"] == "brevo-test-key"
        body = json.loads(sent[0].content)
        assert body["to"] == [{"email": "person@example.com", "name": "person"}]
        assert "https://app.test/reset?token=abc" in body["htmlContent"]

    @pytest.mark.asyncio
    async def test_rejected_message_raises_typed_error(self):
        with pytest.raises(MailDeliveryError) as exc_info:
            await brevo(lambda request: httpx.Response(401)).send_password_reset("a@example.com", "link")
        assert exc_info.value.code == ErrorCode.MAIL_DELIVERY_FAILED
        assert exc_info.value.status_code == 502
        assert "401" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unreachable_provider_raises_typed_error(self, unreachable_mailer):
        with pytest.raises(MailDeliveryError) as exc_info:
            await unreachable_mailer.send_password_reset("a@example.com", "link")
        assert exc_info.value.detail == "ConnectError"


class TestBuildMailer:

    def test_without_api_key_logs_only(self):
        assert isinstance(build_mailer(api_key=""), LogMailer)

    def test_with_api_key(self):
        mailer = build_mailer(api_key="brevo-key", sender="noreply@example.com")
        assert isinstance(mailer, BrevoMailer)
        assert mailer.sender == "noreply@example.com"

    def test_incomplete_mailer_cannot_be_created(self):
        class Incomplete(Mailer):
            pass

        with pytest.raises(TypeError):
            Incomplete()
