"""Tests for the concrete provider adapters and shared helpers."""

import json
import smtplib
import time
from collections.abc import Callable, Iterator
from typing import Any
from urllib.parse import parse_qs
from unittest.mock import MagicMock

import httpx
import pytest

from africom_gateway.config import (
    AfricasTalkingConfig,
    KairosConfig,
    SmtpConfig,
    TwilioConfig,
)
from africom_gateway.enums import Channel, DeliveryState, SendStatus
from africom_gateway.exceptions import ProviderConfigurationError
from africom_gateway.providers import ProviderRegistry
from africom_gateway.providers.africastalking import AfricasTalkingProvider, parse_amount
from africom_gateway.providers.base import (
    ProviderCapabilities,
    count_sms_units,
    mask_recipient,
    normalize_phone_number,
    validate_e164,
)
from africom_gateway.providers.kairos import KairosProvider, map_status_code
from africom_gateway.providers.smtp import SmtpProvider
from africom_gateway.providers.twilio import TwilioProvider
from africom_gateway.router import Router
from africom_gateway.tasks import is_retryable

from tests.helpers import make_options

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def _recording(response: httpx.Response) -> tuple[Handler, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return response

    return handler, requests


def _kairos(handler: Handler) -> KairosProvider:
    config = KairosConfig(api_key="key", api_secret="secret", base_url="https://kairos.test/v1")
    return KairosProvider(config, client=_client(handler))


def _africastalking(handler: Handler) -> AfricasTalkingProvider:
    config = AfricasTalkingConfig(api_key="at-key", username="sandbox", base_url="https://at.test/version1")
    return AfricasTalkingProvider(config, client=_client(handler))


def _twilio(handler: Handler) -> TwilioProvider:
    config = TwilioConfig(
        account_sid="AC123",
        auth_token="token",
        phone_number="+15005550006",
        base_url="https://twilio.test/2010-04-01",
    )
    return TwilioProvider(config, client=_client(handler))


class TestKairosProvider:
    def test_requires_credentials(self) -> None:
        with pytest.raises(ProviderConfigurationError):
            KairosProvider(KairosConfig(api_key="", api_secret=""))

    def test_default_capabilities(self) -> None:
        provider = _kairos(_recording(httpx.Response(200))[0])

        assert provider.supports_country("GH")
        assert not provider.supports_country("KE")
        assert provider.supports_network("telecel")
        assert not provider.supports_network("airtel")
        assert provider.capabilities.priority == 1

    def test_invalid_recipient_rejected_before_network_call(self) -> None:
        handler, requests = _recording(httpx.Response(200))
        provider = _kairos(handler)

        outcome = provider.send(make_options(recipient="254711000000"))

        assert outcome.success is False
        assert outcome.status == SendStatus.INVALID_PARAMETERS
        assert outcome.error_code == "1702"
        assert requests == []
        assert provider.stats.total_failed == 1

    @pytest.mark.parametrize("sender_id", ["AB", "TooLongSender1", "Afri-Com"])
    def test_invalid_sender_id(self, sender_id: str) -> None:
        handler, requests = _recording(httpx.Response(200))
        provider = _kairos(handler)

        outcome = provider.send(make_options(sender_id=sender_id))

        assert outcome.status == SendStatus.INVALID_PARAMETERS
        assert requests == []

    def test_successful_send(self) -> None:
        handler, requests = _recording(
            httpx.Response(
                200,
                json={"success": True, "statusCode": 200, "statusMessage": "OK", "data": {"id": "k-1"}},
            )
        )
        provider = _kairos(handler)

        outcome = provider.send(make_options(sender_id="Afri Com"))

        assert outcome.success is True
        assert outcome.status == SendStatus.SUBMITTED
        assert outcome.external_id == "k-1"
        assert outcome.provider_id == "kairos"
        assert provider.stats.total_delivered == 1
        assert provider.stats.avg_latency_ms >= 0

        request = requests[0]
        assert request.url.path == "/v1/sms/quick"
        assert request.headers["x-api-key"] == "key"
        assert json.loads(request.content) == {
            "to": "233241234567",
            "from": "Afri Com",
            "message": "Hello",
        }

    def test_falls_back_to_caller_message_id(self) -> None:
        handler, _ = _recording(httpx.Response(200, json={"success": True, "statusCode": 200}))
        provider = _kairos(handler)

        outcome = provider.send(make_options(message_id="corr-9"))

        assert outcome.external_id == "corr-9"

    @pytest.mark.parametrize(
        ("status_code", "expected"),
        [
            (400, SendStatus.INVALID_PARAMETERS),
            (401, SendStatus.AUTHENTICATION_ERROR),
            (403, SendStatus.INSUFFICIENT_CREDIT),
            (500, SendStatus.PROVIDER_ERROR),
            (422, SendStatus.REJECTED),
        ],
    )
    def test_error_status_mapping(self, status_code: int, expected: SendStatus) -> None:
        handler, _ = _recording(
            httpx.Response(
                status_code,
                json={"success": False, "statusCode": status_code, "statusMessage": "nope"},
            )
        )
        provider = _kairos(handler)

        outcome = provider.send(make_options())

        assert outcome.success is False
        assert outcome.status == expected
        assert outcome.error_code == str(status_code)
        assert provider.stats.total_failed == 1

    def test_timeout_is_provider_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        provider = _kairos(handler)

        outcome = provider.send(make_options())

        assert outcome.success is False
        assert outcome.status == SendStatus.PROVIDER_ERROR
        assert outcome.error_code == "TIMEOUT"
        assert provider.stats.total_failed == 1

    def test_connection_error_is_provider_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        outcome = _kairos(handler).send(make_options())

        assert outcome.status == SendStatus.PROVIDER_ERROR
        assert outcome.error_code == "1710"

    def test_malformed_response_is_failed(self) -> None:
        handler, _ = _recording(httpx.Response(200, text="<html>oops</html>"))
        provider = _kairos(handler)

        outcome = provider.send(make_options())

        assert outcome.status == SendStatus.FAILED
        assert outcome.error_code == "1710"
        assert provider.stats.total_failed == 1

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("success", DeliveryState.DELIVERED),
            ("DELIVERED", DeliveryState.DELIVERED),
            ("pending", DeliveryState.SENT),
            ("undelivered", DeliveryState.FAILED),
            ("mystery", DeliveryState.UNKNOWN),
        ],
    )
    def test_delivery_status_mapping(self, raw: str, expected: DeliveryState) -> None:
        handler, requests = _recording(
            httpx.Response(200, json={"success": True, "data": {"status": raw}})
        )

        status = _kairos(handler).get_delivery_status("k-1")

        assert status.state == expected
        assert status.external_id == "k-1"
        assert requests[0].url.path == "/v1/sms/k-1/status"

    def test_delivery_status_transport_error_is_unknown(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        status = _kairos(handler).get_delivery_status("k-1")

        assert status.state == DeliveryState.UNKNOWN
        assert status.error == "refused"

    def test_balance(self) -> None:
        handler, _ = _recording(httpx.Response(200, json={"success": True, "data": {"balance": "42.50"}}))

        balance = _kairos(handler).check_balance()

        assert balance.amount == 42.5
        assert balance.currency == "GHS"
        assert balance.error is None

    def test_balance_failure(self) -> None:
        handler, _ = _recording(
            httpx.Response(401, json={"success": False, "statusMessage": "Unauthorized"})
        )
        provider = _kairos(handler)

        balance = provider.check_balance()
        health = provider.health_check()

        assert balance.error == "Unauthorized"
        assert health.healthy is False
        assert health.message == "Unauthorized"


class TestAfricasTalkingProvider:
    def test_successful_send_parses_cost(self) -> None:
        handler, requests = _recording(
            httpx.Response(
                201,
                json={
                    "SMSMessageData": {
                        "Message": "Sent to 1/1 Total Cost: KES 0.8000",
                        "Recipients": [
                            {
                                "statusCode": 101,
                                "number": "+254711000000",
                                "status": "Success",
                                "cost": "KES 0.8000",
                                "messageId": "ATXid_1",
                            }
                        ],
                    }
                },
            )
        )
        provider = _africastalking(handler)

        outcome = provider.send(make_options(recipient="254711000000"))

        assert outcome.success is True
        assert outcome.external_id == "ATXid_1"
        assert outcome.cost == pytest.approx(0.8)
        assert outcome.currency == "KES"

        request = requests[0]
        assert request.headers["apiKey"] == "at-key"
        form = parse_qs(request.content.decode())
        assert form["to"] == ["+254711000000"]
        assert form["username"] == ["sandbox"]

    @pytest.mark.parametrize(
        ("status_code", "expected"),
        [
            (405, SendStatus.INSUFFICIENT_CREDIT),
            (403, SendStatus.INVALID_PARAMETERS),
            (406, SendStatus.REJECTED),
            (500, SendStatus.PROVIDER_ERROR),
        ],
    )
    def test_recipient_status_mapping(self, status_code: int, expected: SendStatus) -> None:
        handler, _ = _recording(
            httpx.Response(
                201,
                json={
                    "SMSMessageData": {
                        "Recipients": [{"statusCode": status_code, "status": "Error"}],
                    }
                },
            )
        )

        outcome = _africastalking(handler).send(make_options(recipient="+254711000000"))

        assert outcome.success is False
        assert outcome.status == expected
        assert outcome.error_code == str(status_code)

    def test_bad_api_key(self) -> None:
        handler, _ = _recording(httpx.Response(401, text="The supplied authentication is invalid"))

        outcome = _africastalking(handler).send(make_options())

        assert outcome.status == SendStatus.AUTHENTICATION_ERROR

    def test_non_e164_recipient_rejected(self) -> None:
        handler, requests = _recording(httpx.Response(201))

        outcome = _africastalking(handler).send(make_options(recipient="0711000000"))

        assert outcome.status == SendStatus.INVALID_PARAMETERS
        assert requests == []

    def test_delivery_status_is_unknown(self) -> None:
        handler, requests = _recording(httpx.Response(200))

        status = _africastalking(handler).get_delivery_status("ATXid_1")

        assert status.state == DeliveryState.UNKNOWN
        assert requests == []

    def test_balance(self) -> None:
        handler, requests = _recording(
            httpx.Response(200, json={"UserData": {"balance": "KES 1785.50"}})
        )

        balance = _africastalking(handler).check_balance()

        assert balance.amount == pytest.approx(1785.5)
        assert balance.currency == "KES"
        assert requests[0].url.params["username"] == "sandbox"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("KES 0.8000", (0.8, "KES")),
            ("GHS 12", (12.0, "GHS")),
            ("", (None, None)),
            ("free", (None, None)),
            ("KES abc", (None, None)),
        ],
    )
    def test_parse_amount(self, raw: str, expected: tuple[float | None, str | None]) -> None:
        assert parse_amount(raw) == expected


class TestTwilioProvider:
    def test_successful_send(self) -> None:
        handler, requests = _recording(
            httpx.Response(201, json={"sid": "SM1", "status": "queued", "price": None})
        )
        provider = _twilio(handler)

        outcome = provider.send(make_options(recipient="233241234567"))

        assert outcome.success is True
        assert outcome.status == SendStatus.SUBMITTED
        assert outcome.external_id == "SM1"

        request = requests[0]
        assert request.url.path == "/2010-04-01/Accounts/AC123/Messages.json"
        assert request.headers["authorization"].startswith("Basic ")
        form = parse_qs(request.content.decode())
        assert form["To"] == ["+233241234567"]
        assert form["From"] == ["+15005550006"]

    def test_http_error_uses_twilio_code(self) -> None:
        handler, _ = _recording(
            httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})
        )

        outcome = _twilio(handler).send(make_options())

        assert outcome.status == SendStatus.INVALID_PARAMETERS
        assert outcome.error_code == "21211"
        assert outcome.message == "Invalid 'To' Phone Number"

    def test_authentication_error(self) -> None:
        handler, _ = _recording(httpx.Response(401, json={"code": 20003, "message": "Authenticate"}))

        outcome = _twilio(handler).send(make_options())

        assert outcome.status == SendStatus.AUTHENTICATION_ERROR

    def test_delivery_status(self) -> None:
        handler, requests = _recording(httpx.Response(200, json={"sid": "SM1", "status": "delivered"}))

        status = _twilio(handler).get_delivery_status("SM1")

        assert status.state == DeliveryState.DELIVERED
        assert requests[0].url.path.endswith("/Messages/SM1.json")

    def test_delivery_status_not_found_is_unknown(self) -> None:
        handler, _ = _recording(httpx.Response(404, json={"code": 20404, "message": "Not found"}))

        status = _twilio(handler).get_delivery_status("SM404")

        assert status.state == DeliveryState.UNKNOWN
        assert status.error == "Not found"

    def test_balance(self) -> None:
        handler, _ = _recording(httpx.Response(200, json={"balance": "12.50", "currency": "USD"}))

        balance = _twilio(handler).check_balance()

        assert balance.amount == 12.5
        assert balance.currency == "USD"

    def test_is_global(self) -> None:
        provider = _twilio(_recording(httpx.Response(200))[0])

        assert provider.supports_country("ZZ")
        assert provider.capabilities.priority == 10


class TestSmtpProvider:
    def _provider(self, **overrides: object) -> tuple[SmtpProvider, MagicMock, MagicMock]:
        config = SmtpConfig(host="smtp.test", user="mailer", password="pw", **overrides)
        factory = MagicMock()
        server = MagicMock()
        factory.return_value.__enter__.return_value = server
        return SmtpProvider(config, smtp_factory=factory), factory, server

    def test_is_email_channel(self) -> None:
        provider, _, _ = self._provider()

        assert provider.capabilities.channel == Channel.EMAIL
        assert provider.supports_country("GH")

    def test_successful_send(self) -> None:
        provider, factory, server = self._provider()

        outcome = provider.send(
            make_options(recipient="ama@example.com", sender_id="noreply@africom.io", subject="Hi")
        )

        assert outcome.success is True
        assert outcome.status == SendStatus.SENT
        assert outcome.external_id
        factory.assert_called_once_with("smtp.test", 587, timeout=30.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "pw")
        sent = server.send_message.call_args.args[0]
        assert sent["To"] == "ama@example.com"
        assert sent["Subject"] == "Hi"
        assert provider.stats.total_delivered == 1

    def test_invalid_address_rejected_before_connecting(self) -> None:
        provider, factory, _ = self._provider()

        outcome = provider.send(make_options(recipient="not-an-email"))

        assert outcome.status == SendStatus.INVALID_PARAMETERS
        factory.assert_not_called()
        assert provider.stats.total_failed == 1

    def test_authentication_failure(self) -> None:
        provider, _, server = self._provider()
        server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")

        outcome = provider.send(make_options(recipient="ama@example.com"))

        assert outcome.status == SendStatus.AUTHENTICATION_ERROR
        assert outcome.error_code == "535"

    def test_connection_failure(self) -> None:
        provider, factory, _ = self._provider()
        factory.side_effect = TimeoutError("timed out")

        outcome = provider.send(make_options(recipient="ama@example.com"))

        assert outcome.status == SendStatus.PROVIDER_ERROR
        assert provider.stats.total_failed == 1

    def test_balance_is_unmetered(self) -> None:
        provider, _, _ = self._provider()

        health = provider.health_check()

        assert health.healthy is True
        assert health.balance == 0.0


class TestHelpers:
    @pytest.mark.parametrize(
        ("recipient", "expected"),
        [("233241234567", "2332***567"), ("1234", "***"), ("ama@example.com", "ama@***com")],
    )
    def test_mask_recipient(self, recipient: str, expected: str) -> None:
        assert mask_recipient(recipient) == expected

    @pytest.mark.parametrize(
        ("phone", "country", "expected"),
        [
            ("024 123 4567", "GH", "233241234567"),
            ("+233-24-123-4567", "GH", "233241234567"),
            ("0711000000", "KE", "254711000000"),
            ("0711000000", "XX", "0711000000"),
        ],
    )
    def test_normalize_phone_number(self, phone: str, country: str, expected: str) -> None:
        assert normalize_phone_number(phone, country) == expected

    def test_validate_e164(self) -> None:
        assert validate_e164("+233241234567")
        assert validate_e164("233241234567")
        assert not validate_e164("0241234567")
        assert not validate_e164("abc")

    @pytest.mark.parametrize(
        ("message", "units"),
        [
            ("a" * 160, 1),
            ("a" * 161, 2),
            ("a" * 306, 2),
            ("a" * 307, 3),
            ("€" * 70, 1),
            ("€" * 71, 2),
        ],
    )
    def test_count_sms_units(self, message: str, units: int) -> None:
        assert count_sms_units(message) == units


class _TrickleStream(httpx.SyncByteStream):
    """Response body that arrives slowly, a few bytes at a time."""

    def __init__(self, chunks: int, delay: float) -> None:
        self._chunks = chunks
        self._delay = delay

    def __iter__(self) -> Iterator[bytes]:
        for _ in range(self._chunks):
            time.sleep(self._delay)
            yield b" "


class TestUpstreamOutages:
    def test_kairos_html_500_is_provider_error(self) -> None:
        handler, _ = _recording(httpx.Response(500, text="Internal Server Error"))
        provider = _kairos(handler)

        outcome = provider.send(make_options())

        assert outcome.status == SendStatus.PROVIDER_ERROR
        assert outcome.error_code == "500"
        assert provider.stats.total_failed == 1

    def test_kairos_html_503_is_provider_error(self) -> None:
        handler, _ = _recording(httpx.Response(503, text="<html>Service Unavailable</html>"))

        outcome = _kairos(handler).send(make_options())

        assert outcome.status == SendStatus.PROVIDER_ERROR
        assert outcome.error_code == "503"

    def test_kairos_non_json_4xx_uses_http_status(self) -> None:
        handler, _ = _recording(httpx.Response(401, text="Unauthorized"))

        outcome = _kairos(handler).send(make_options())

        assert outcome.status == SendStatus.AUTHENTICATION_ERROR
        assert outcome.error_code == "401"

    def test_twilio_html_503_is_provider_error(self) -> None:
        handler, _ = _recording(httpx.Response(503, text="<html>Service Unavailable</html>"))
        provider = _twilio(handler)

        outcome = provider.send(make_options())

        assert outcome.status == SendStatus.PROVIDER_ERROR
        assert outcome.error_code == "503"
        assert provider.stats.total_failed == 1

    def test_twilio_html_error_on_status_and_balance(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>Bad Gateway</html>")

        provider = _twilio(handler)

        status = provider.get_delivery_status("SM1")
        balance = provider.check_balance()

        assert status.state == DeliveryState.UNKNOWN
        assert status.error == "Twilio returned HTTP 502"
        assert balance.error == "Twilio returned HTTP 502"

    def test_exhausted_outage_stays_retryable(self) -> None:
        def outage(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="<html>Service Unavailable</html>")

        registry = ProviderRegistry()
        registry.register(_kairos(outage))
        registry.register(_twilio(outage))

        outcome = Router(registry).send(make_options(), "GH")

        assert outcome.provider_id == "multiple"
        assert outcome.status == SendStatus.PROVIDER_ERROR
        assert is_retryable(outcome) is True


class TestMalformedPayloads:
    @pytest.mark.parametrize(
        "body",
        [
            {"SMSMessageData": {"Recipients": [{"statusCode": None}]}},
            {"SMSMessageData": {"Recipients": ["not-an-object"]}},
            {"SMSMessageData": {"Recipients": [{"statusCode": "abc"}]}},
            {"SMSMessageData": "oops"},
        ],
    )
    def test_africastalking_bad_shapes_are_failed(self, body: dict[str, Any]) -> None:
        handler, _ = _recording(httpx.Response(201, json=body))
        provider = _africastalking(handler)

        outcome = provider.send(make_options(recipient="+254711000000"))

        assert outcome.success is False
        assert outcome.status in (SendStatus.FAILED, SendStatus.REJECTED)
        assert provider.stats.total_sent == 1
        assert provider.stats.total_failed == 1

    def test_africastalking_null_status_code_is_failed(self) -> None:
        handler, _ = _recording(
            httpx.Response(201, json={"SMSMessageData": {"Recipients": [{"statusCode": None}]}})
        )

        outcome = _africastalking(handler).send(make_options(recipient="+254711000000"))

        assert outcome.status == SendStatus.FAILED
        assert outcome.error_code == "AT_ERROR"

    def test_kairos_non_object_data(self) -> None:
        handler, _ = _recording(
            httpx.Response(200, json={"success": True, "statusCode": 200, "data": ["k-1"]})
        )

        outcome = _kairos(handler).send(make_options(message_id="corr-1"))

        assert outcome.success is True
        assert outcome.external_id == "corr-1"

    def test_kairos_json_array_body(self) -> None:
        handler, _ = _recording(httpx.Response(200, json=["unexpected"]))
        provider = _kairos(handler)

        outcome = provider.send(make_options())

        assert outcome.status == SendStatus.FAILED
        assert outcome.error_code == "1710"
        assert provider.stats.total_failed == 1

    def test_kairos_delivery_status_non_object_data(self) -> None:
        handler, _ = _recording(httpx.Response(200, json={"success": True, "data": "delivered"}))

        status = _kairos(handler).get_delivery_status("k-1")

        assert status.state == DeliveryState.UNKNOWN

    def test_twilio_balance_missing_field(self) -> None:
        handler, _ = _recording(httpx.Response(200, json={"currency": "USD"}))

        balance = _twilio(handler).check_balance()

        assert balance.error


class TestCallDeadline:
    def test_trickling_body_times_out(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, stream=_TrickleStream(chunks=20, delay=0.02))

        config = KairosConfig(api_key="key", api_secret="secret", base_url="https://kairos.test/v1")
        capabilities = ProviderCapabilities(
            name="kairos", supported_countries=("GH",), timeout_seconds=0.1
        )
        provider = KairosProvider(config, capabilities, client=_client(handler))

        outcome = provider.send(make_options())

        assert outcome.status == SendStatus.PROVIDER_ERROR
        assert outcome.error_code == "TIMEOUT"
        assert provider.stats.total_failed == 1

    def test_prompt_body_is_read_in_full(self) -> None:
        handler, _ = _recording(
            httpx.Response(200, json={"success": True, "statusCode": 200, "data": {"id": "k-9"}})
        )

        outcome = _kairos(handler).send(make_options())

        assert outcome.external_id == "k-9"


@pytest.mark.parametrize(
    ("status_code", "expected"),
    [
        (None, SendStatus.REJECTED),
        (401, SendStatus.AUTHENTICATION_ERROR),
        (502, SendStatus.PROVIDER_ERROR),
        (503, SendStatus.PROVIDER_ERROR),
        (418, SendStatus.REJECTED),
    ],
)
def test_kairos_status_code_map(status_code: int | None, expected: SendStatus) -> None:
    assert map_status_code(status_code) == expected
