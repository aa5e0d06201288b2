"""Africa's Talking SMS provider (pan-African)."""

import logging

import httpx

from africom_gateway.config import AfricasTalkingConfig
from africom_gateway.enums import DeliveryState, SendStatus
from africom_gateway.exceptions import ProviderConfigurationError
from africom_gateway.providers.base import (
    Balance,
    DeliveryStatus,
    ProviderCapabilities,
    SendOptions,
    SendOutcome,
    validate_e164,
)
from africom_gateway.providers.http import (
    MALFORMED_RESPONSE_ERRORS,
    HttpProviderAdapter,
    as_dict,
    json_object,
)

logger = logging.getLogger(__name__)

SUPPORTED_COUNTRIES = (
    "KE", "UG", "TZ", "RW", "NG", "GH", "ZA",
    "BF", "ML", "SN", "CI", "BJ", "TG", "NE",
)

# Per-recipient status codes returned by the messaging endpoint.
_SUCCESS_CODES = frozenset({100, 101, 102})
_RECIPIENT_STATUS_MAP: dict[int, SendStatus] = {
    401: SendStatus.REJECTED,
    402: SendStatus.INVALID_PARAMETERS,
    403: SendStatus.INVALID_PARAMETERS,
    404: SendStatus.INVALID_PARAMETERS,
    405: SendStatus.INSUFFICIENT_CREDIT,
    406: SendStatus.REJECTED,
    407: SendStatus.REJECTED,
    409: SendStatus.REJECTED,
    500: SendStatus.PROVIDER_ERROR,
    501: SendStatus.PROVIDER_ERROR,
    502: SendStatus.PROVIDER_ERROR,
}


def parse_amount(value: str | None) -> tuple[float | None, str | None]:
    """Split an amount string like ``"KES 0.8000"`` into value and currency."""
    if not value:
        return None, None
    parts = value.split()
    if len(parts) != 2:
        return None, None
    currency, amount = parts
    try:
        return float(amount), currency
    except ValueError:
        return None, None


class AfricasTalkingProvider(HttpProviderAdapter):
    """Sends through the Africa's Talking bulk messaging endpoint.

    Delivery reports are pushed by Africa's Talking to a callback URL;
    there is no pull endpoint, so status lookups always come back
    ``UNKNOWN``.
    """

    generic_error_code = "AT_ERROR"

    def __init__(
        self,
        config: AfricasTalkingConfig,
        capabilities: ProviderCapabilities | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        if not config.is_configured:
            raise ProviderConfigurationError(
                "Africa's Talking requires AFRICASTALKING_API_KEY and AFRICASTALKING_USERNAME"
            )

        capabilities = capabilities or ProviderCapabilities(
            name="africastalking",
            supported_countries=SUPPORTED_COUNTRIES,
            priority=config.priority,
            timeout_seconds=config.timeout_seconds,
        )
        super().__init__(capabilities, config.base_url, client)
        self._username = config.username
        self._headers = {
            "apiKey": config.api_key,
            "Accept": "application/json",
        }

    def validate(self, options: SendOptions) -> str | None:
        reason = super().validate(options)
        if reason is not None:
            return reason
        if not validate_e164(options.recipient):
            return "Recipient must be an E.164 phone number"
        return None

    def _deliver(self, options: SendOptions) -> SendOutcome:
        recipient = options.recipient if options.recipient.startswith("+") else f"+{options.recipient}"
        response = self._request(
            "POST",
            "messaging",
            data={
                "username": self._username,
                "to": recipient,
                "message": options.message,
                "from": options.sender_id,
            },
            headers=self._headers,
        )

        if response.status_code == 401:
            return self._outcome(
                False,
                SendStatus.AUTHENTICATION_ERROR,
                response.text or "Invalid API key",
                error_code="401",
            )
        if response.status_code >= 500:
            return self._outcome(
                False,
                SendStatus.PROVIDER_ERROR,
                f"Africa's Talking returned HTTP {response.status_code}",
                error_code=str(response.status_code),
            )

        body = json_object(response)
        message_data = as_dict(body.get("SMSMessageData"))
        recipients = message_data.get("Recipients") or []
        if not recipients:
            return self._outcome(
                False,
                SendStatus.REJECTED,
                message_data.get("Message") or "No recipients accepted",
                error_code=self.generic_error_code,
            )

        entry = recipients[0]
        status_code = int(entry.get("statusCode", 0))
        cost, currency = parse_amount(entry.get("cost"))

        if status_code in _SUCCESS_CODES:
            return self._outcome(
                True,
                SendStatus.SUBMITTED,
                entry.get("status") or "Message submitted successfully",
                external_id=entry.get("messageId") or options.message_id,
                cost=cost,
                currency=currency,
            )

        return self._outcome(
            False,
            _RECIPIENT_STATUS_MAP.get(status_code, SendStatus.REJECTED),
            entry.get("status") or "Failed to send SMS",
            error_code=str(status_code),
        )

    def get_delivery_status(self, external_id: str) -> DeliveryStatus:
        return DeliveryStatus(
            state=DeliveryState.UNKNOWN,
            external_id=external_id,
            error="Africa's Talking reports delivery via callbacks only",
        )

    def check_balance(self) -> Balance:
        try:
            response = self._request(
                "GET",
                "user",
                params={"username": self._username},
                headers=self._headers,
            )
            body = json_object(response)
            amount, currency = parse_amount(as_dict(body.get("UserData")).get("balance"))
        except (httpx.HTTPError, *MALFORMED_RESPONSE_ERRORS) as exc:
            logger.warning("Balance check failed", extra={"provider": self.name, "error": str(exc)})
            return Balance(amount=0.0, currency="", error=str(exc) or "Failed to check balance")

        if amount is None:
            return Balance(amount=0.0, currency=currency or "", error="Balance missing from response")
        return Balance(amount=amount, currency=currency or "")
