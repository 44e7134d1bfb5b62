import json
import os
import smtplib
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings, clean_env_value
from tools.errors import ConfigurationError, DownstreamError, NotificationError
from tools.leadsquared import (
    DispatchFailure, DispatchSuccess, LeadSquaredClient,
    describe_error, error_message, is_duplicate,
)
from tools.mailer import LeadNotifier, Mailer, build_mailer, humanize_key


def mock_client(handler, **overrides) -> LeadSquaredClient:
    settings = Settings(leadsquared_endpoint="https://crm.test/Lead.Create", **overrides)
    return LeadSquaredClient(settings, transport=httpx.MockTransport(handler))


class TestConfig:
    """Environment value cleaning and aliases."""

    def test_clean_env_value(self):
        assert clean_env_value("  smtp.example.com  # primary relay") == "smtp.example.com"
        assert clean_env_value(None) == ""
        assert clean_env_value("#only a comment") == ""

    def test_from_env_aliases(self, monkeypatch):
        monkeypatch.setenv("LEADSQUARED_ACCESS_KEY", "ak # comment")
        monkeypatch.setenv("LSQ_SECRET_KEY", "sk")
        monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.com, https://b.com,")
        monkeypatch.setenv("SMTP_USER", "bot@example.com")
        monkeypatch.setenv("SMTP_SECURE", "1")
        monkeypatch.delenv("LSQ_ACCESS_KEY", raising=False)
        monkeypatch.delenv("EMAIL_FROM", raising=False)
        monkeypatch.delenv("SMTP_FROM", raising=False)

        settings = Settings.from_env()

        assert settings.leadsquared_access_key == "ak"
        assert settings.leadsquared_secret_key == "sk"
        assert settings.allowed_origins == ["https://a.com", "https://b.com"]
        assert settings.smtp_secure is True
        assert settings.email_from == '"SOI Website" <bot@example.com>'


class TestLeadSquared:
    """LeadSquared URL resolution, error description and lead creation."""

    def test_explicit_endpoint_wins(self):
        client = LeadSquaredClient(Settings(
            leadsquared_endpoint="https://override.test/create",
            leadsquared_base_url="https://api.test",
        ))
        assert client.resolve_url() == "https://override.test/create"

    def test_url_from_base_and_keys(self):
        client = LeadSquaredClient(Settings(
            leadsquared_base_url="https://api-in21.leadsquared.com/",
            leadsquared_access_key="u$r/1",
            leadsquared_secret_key="a b&c",
        ))
        assert client.resolve_url() == (
            "https://api-in21.leadsquared.com/v2/LeadManagement.svc/Lead.Create"
            "?accessKey=u%24r%2F1&secretKey=a%20b%26c"
        )

    def test_missing_base_url(self):
        client = LeadSquaredClient(Settings(leadsquared_access_key="a", leadsquared_secret_key="s"))
        with pytest.raises(ConfigurationError, match="base URL is not configured") as exc:
            client.resolve_url()
        assert exc.value.status == 500

    def test_missing_keys(self):
        client = LeadSquaredClient(Settings(leadsquared_base_url="https://api.test", leadsquared_access_key="a"))
        with pytest.raises(ConfigurationError, match="keys are not configured"):
            client.resolve_url()

    @pytest.mark.parametrize("response, expected", [
        ({"duplicate": True}, True),
        ({"status": "duplicate"}, True),
        ({"errorCode": "DUPLICATE"}, True),
        ({"Status": "Success", "Message": {"Id": "42"}}, False),
        ("created", False),
        (None, False),
    ])
    def test_is_duplicate(self, response, expected):
        assert is_duplicate(response) is expected

    def test_describe_error(self):
        assert describe_error(DownstreamError("x", status=500, reason="Internal Server Error", body="oops")) == \
            "HTTP 500 Internal Server Error - oops"
        assert describe_error(DownstreamError("x", status=400, body={"message": "bad"})) == "HTTP 400 - bad"
        assert describe_error(DownstreamError("Connection refused")) == "Connection refused"
        assert describe_error(ConfigurationError("LeadSquared keys are not configured")) == \
            "LeadSquared keys are not configured"
        assert describe_error(DownstreamError("")) == "Unknown error"

    def test_describe_error_empty_text_body(self):
        error = DownstreamError("Request failed with status code 500", status=500,
                                reason="Internal Server Error", body="")
        assert describe_error(error) == "HTTP 500 Internal Server Error"

    def test_error_message_prefers_body(self):
        assert error_message(DownstreamError("m", status=500, body="plain")) == "plain"
        assert error_message(DownstreamError("m", status=500, body={"a": 1})) == '{"a":1}'
        assert error_message(DownstreamError("m", status=500, body="")) == "m"

    def test_error_message_empty_json_body(self):
        assert error_message(DownstreamError("m", status=500, body={})) == "{}"
        assert error_message(DownstreamError("m", status=500, body=[])) == "[]"

    def test_error_message_keeps_non_ascii(self):
        error = DownstreamError("m", status=400, body={"Message": "नाम अमान्य"})
        assert error_message(error) == '{"Message":"नाम अमान्य"}'

    @pytest.mark.asyncio
    async def test_create_lead_success(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"Status": "Success", "Message": {"Id": "42"}})

        payload = [{"Attribute": "FirstName", "Value": "Jane"}]
        outcome = await mock_client(handler).create_lead(payload)

        assert isinstance(outcome, DispatchSuccess)
        assert outcome.duplicate is False
        assert outcome.response["Message"]["Id"] == "42"
        assert str(seen[0].url) == "https://crm.test/Lead.Create"
        assert seen[0].headers["content-type"] == "application/json"
        assert json.loads(seen[0].content) == payload

    @pytest.mark.asyncio
    async def test_create_lead_duplicate(self):
        outcome = await mock_client(
            lambda request: httpx.Response(200, json={"errorCode": "DUPLICATE"})
        ).create_lead([])

        assert isinstance(outcome, DispatchSuccess)
        assert outcome.duplicate is True

    @pytest.mark.asyncio
    async def test_create_lead_http_error(self):
        outcome = await mock_client(
            lambda request: httpx.Response(412, json={"Message": "Invalid attribute"})
        ).create_lead([])

        assert isinstance(outcome, DispatchFailure)
        assert outcome.error.status == 412
        assert outcome.error.body == {"Message": "Invalid attribute"}
        assert describe_error(outcome.error) == "HTTP 412 Precondition Failed - Invalid attribute"

    @pytest.mark.asyncio
    async def test_create_lead_412_logs_field_hint(self):
        with patch("tools.leadsquared.logger") as mock_logger:
            await mock_client(
                lambda request: httpx.Response(412, json={"Message": "Invalid attribute"})
            ).create_lead([])

        messages = [c.args[0] for c in mock_logger.error.call_args_list]
        assert any("invalid field names or format" in m for m in messages)

    @pytest.mark.asyncio
    async def test_create_lead_500_has_no_field_hint(self):
        with patch("tools.leadsquared.logger") as mock_logger:
            await mock_client(lambda request: httpx.Response(500, text="down")).create_lead([])

        messages = [c.args[0] for c in mock_logger.error.call_args_list]
        assert not any("invalid field names" in m for m in messages)

    @pytest.mark.asyncio
    async def test_create_lead_text_body(self):
        outcome = await mock_client(
            lambda request: httpx.Response(502, text="Bad gateway from upstream")
        ).create_lead([])

        assert isinstance(outcome, DispatchFailure)
        assert outcome.error.body == "Bad gateway from upstream"

    @pytest.mark.asyncio
    async def test_create_lead_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        outcome = await mock_client(handler).create_lead([])

        assert isinstance(outcome, DispatchFailure)
        assert isinstance(outcome.error, DownstreamError)
        assert outcome.error.status is None
        assert describe_error(outcome.error) == "Connection refused"

    @pytest.mark.asyncio
    async def test_create_lead_configuration_error(self):
        client = LeadSquaredClient(Settings())
        outcome = await client.create_lead([])

        assert isinstance(outcome, DispatchFailure)
        assert isinstance(outcome.error, ConfigurationError)


class TestMailer:
    """SMTP mailer construction and the lead notifier."""

    def test_humanize_key(self):
        assert humanize_key("leadSquaredStatus") == "Lead Squared Status"
        assert humanize_key("phone") == "Phone"
        assert humanize_key("treatmentPreference") == "Treatment Preference"

    def test_build_mailer_requires_all_credentials(self):
        assert build_mailer(Settings(smtp_host="smtp.test", smtp_port="587", smtp_user="u")) is None
        assert build_mailer(Settings(smtp_host="smtp.test", smtp_port="abc", smtp_user="u", smtp_password="p")) is None

        mailer = build_mailer(Settings(smtp_host="smtp.test", smtp_port="465", smtp_user="u",
                                       smtp_password="p", smtp_secure=True))
        assert mailer.port == 465
        assert mailer.secure is True

    @pytest.mark.asyncio
    async def test_send_uses_starttls_on_587(self):
        mailer = Mailer("smtp.test", 587, "user", "pass")
        with patch("tools.mailer.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value = smtp_cls.return_value
            await mailer.send("from@test", "to@test", "Subject", "<p>hi</p>")

        smtp_cls.assert_called_once_with("smtp.test", 587)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("user", "pass")
        sent = server.send_message.call_args.args[0]
        assert sent["Subject"] == "Subject"
        assert sent["To"] == "to@test"

    @pytest.mark.asyncio
    async def test_send_upgrades_when_server_offers_starttls(self):
        mailer = Mailer("smtp.test", 2525, "user", "pass")
        with patch("tools.mailer.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value = smtp_cls.return_value
            server.has_extn.return_value = True
            await mailer.send("from@test", "to@test", "Subject", "<p>hi</p>")

        server.has_extn.assert_called_with("starttls")
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("user", "pass")

    @pytest.mark.asyncio
    async def test_send_skips_starttls_when_not_offered(self):
        mailer = Mailer("smtp.test", 25, "user", "pass")
        with patch("tools.mailer.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value = smtp_cls.return_value
            server.has_extn.return_value = False
            await mailer.send("from@test", "to@test", "Subject", "<p>hi</p>")

        server.starttls.assert_not_called()
        server.send_message.assert_called_once()

    @pytest.mark.asyncio
    async def test_send_wraps_smtp_errors(self):
        mailer = Mailer("smtp.test", 465, "user", "pass", secure=True)
        with patch("tools.mailer.smtplib.SMTP_SSL", side_effect=smtplib.SMTPConnectError(421, "busy")):
            with pytest.raises(NotificationError):
                await mailer.send("from@test", "to@test", "Subject", "<p>hi</p>")

    def test_render_rows(self):
        notifier = LeadNotifier(None, "from@test", "ops@test")
        html = notifier.render("National Landing Page Lead", {
            "firstName": "Jane", "lastName": "", "leadSquaredStatus": "FAILED – HTTP 500",
        })

        assert "National Landing Page Lead" in html
        assert "First Name" in html
        assert "Last Name" in html
        assert ">NA<" in html
        assert "FAILED – HTTP 500" in html

    def test_render_escapes_values(self):
        notifier = LeadNotifier(None, "from@test", "ops@test")
        html = notifier.render("Lead", {"message": "<script>x</script>"})
        assert "<script>" not in html

    @pytest.mark.asyncio
    async def test_notify_without_mailer_is_noop(self):
        notifier = LeadNotifier(None, "from@test", "ops@test")
        assert await notifier.notify("Lead", "New Lead", {"firstName": "Jane"}) is False

    @pytest.mark.asyncio
    async def test_notify_subject_and_recipient(self):
        mailer = MagicMock()
        mailer.send = AsyncMock()
        notifier = LeadNotifier(mailer, "from@test", "ops@test")

        sent = await notifier.notify(
            "International Consultation Lead", "New International Consultation",
            {"husbandName": "", "wifeName": "Priya", "email": "p@x.com"},
            subject_keys=("husbandName", "wifeName", "email"),
        )

        assert sent is True
        kwargs = mailer.send.await_args.kwargs
        assert kwargs["to"] == "ops@test"
        assert kwargs["sender"] == "from@test"
        assert kwargs["subject"] == "New International Consultation - Priya"

    @pytest.mark.asyncio
    async def test_notify_swallows_send_failure(self):
        mailer = MagicMock()
        mailer.send = AsyncMock(side_effect=NotificationError("smtp down"))
        notifier = LeadNotifier(mailer, "from@test", "ops@test")

        assert await notifier.notify("Lead", "New Lead", {"firstName": "Jane"}) is False
