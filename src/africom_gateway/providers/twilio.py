"""Twilio SMS provider, used as the global fallback."""

import logging
from datetime import datetime, timezone

import httpx

from africom_gateway.config import TwilioConfig
from africom_gateway.enums import DeliveryState, SendStatus
from africom_gateway.exceptions import ProviderConfigurationError
from africom_gateway.providers.base import (
    WILDCARD,
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
    error_body,
    json_object,
)

logger = logging.getLogger(__name__)

_MESSAGE_STATUS_MAP: dict[str, SendStatus] = {
    "accepted": SendStatus.SUBMITTED,
    "scheduled": SendStatus.SUBMITTED,
    "queued": SendStatus.SUBMITTED,
    "sending": SendStatus.SUBMITTED,
    "sent": SendStatus.SENT,
    "delivered": SendStatus.DELIVERED,
}

_DELIVERY_MAP: dict[str, DeliveryState] = {
    "accepted": DeliveryState.PENDING,
    "scheduled": DeliveryState.PENDING,
    "queued": DeliveryState.PENDING,
    "sending": DeliveryState.PENDING,
    "sent": DeliveryState.SENT,
    "delivered": DeliveryState.DELIVERED,
    "failed": DeliveryState.FAILED,
    "undelivered": DeliveryState.FAILED,
    "canceled": DeliveryState.FAILED,
}


def map_http_error(status_code: int) -> SendStatus:
    if status_code == 401:
        return SendStatus.AUTHENTICATION_ERROR
    if status_code == 400:
        return SendStatus.INVALID_PARAMETERS
    if status_code >= 500:
        return SendStatus.PROVIDER_ERROR
    return SendStatus.REJECTED


class TwilioProvider(HttpProviderAdapter):
    """Twilio Messages API (form-encoded, basic auth)."""

    generic_error_code = "TWILIO_ERROR"

    def __init__(
        self,
        config: TwilioConfig,
        capabilities: ProviderCapabilities | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        if not config.is_configured:
            raise ProviderConfigurationError("Twilio requires TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN")

        capabilities = capabilities or ProviderCapabilities(
            name="twilio",
            supported_countries=(WILDCARD,),
            priority=config.priority,
            timeout_seconds=config.timeout_seconds,
        )
        super().__init__(capabilities, f"{config.base_url.rstrip('/')}/Accounts/{config.account_sid}", client)
        self._auth = (config.account_sid, config.auth_token)
        self._phone_number = config.phone_number

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
            "Messages.json",
            data={
                "To": recipient,
                # Alphanumeric sender ids are only honoured in some markets;
                # the configured number is used when one is set.
                "From": self._phone_number or options.sender_id,
                "Body": options.message,
            },
            auth=self._auth,
        )

        if response.is_error:
            # 5xx bodies are often HTML outage pages rather than Twilio JSON.
            body = error_body(response)
            code = body.get("code")
            return self._outcome(
                False,
                map_http_error(response.status_code),
                body.get("message") or f"Twilio returned HTTP {response.status_code}",
                error_code=str(code) if code is not None else str(response.status_code),
            )

        body = json_object(response)
        status = _MESSAGE_STATUS_MAP.get(str(body.get("status", "")).lower())
        if status is None:
            return self._outcome(
                False,
                SendStatus.FAILED,
                body.get("error_message") or f"Unexpected message status {body.get('status')!r}",
                external_id=body.get("sid"),
                error_code=str(body.get("error_code") or self.generic_error_code),
            )

        price = body.get("price")
        return self._outcome(
            True,
            status,
            "Message submitted successfully",
            external_id=body.get("sid") or options.message_id,
            cost=abs(float(price)) if price is not None else None,
            currency=body.get("price_unit"),
        )

    def get_delivery_status(self, external_id: str) -> DeliveryStatus:
        try:
            response = self._request("GET", f"Messages/{external_id}.json", auth=self._auth)
            if response.is_error:
                return DeliveryStatus(
                    state=DeliveryState.UNKNOWN,
                    external_id=external_id,
                    error=error_body(response).get("message") or f"Twilio returned HTTP {response.status_code}",
                )
            body = json_object(response)
            state = _DELIVERY_MAP.get(str(body.get("status", "")).lower(), DeliveryState.UNKNOWN)
        except (httpx.HTTPError, *MALFORMED_RESPONSE_ERRORS) as exc:
            logger.warning(
                "Delivery status check failed",
                extra={"provider": self.name, "external_id": external_id, "error": str(exc)},
            )
            return DeliveryStatus(state=DeliveryState.UNKNOWN, external_id=external_id, error=str(exc))

        return DeliveryStatus(
            state=state,
            external_id=external_id,
            timestamp=datetime.now(timezone.utc),
            error=body.get("error_message"),
        )

    def check_balance(self) -> Balance:
        try:
            response = self._request("GET", "Balance.json", auth=self._auth)
            if response.is_error:
                message = error_body(response).get("message") or f"Twilio returned HTTP {response.status_code}"
                return Balance(amount=0.0, currency="USD", error=message)
            body = json_object(response)
            return Balance(amount=float(body["balance"]), currency=body.get("currency", "USD"))
        except (httpx.HTTPError, *MALFORMED_RESPONSE_ERRORS) as exc:
            logger.warning("Balance check failed", extra={"provider": self.name, "error": str(exc)})
            return Balance(amount=0.0, currency="USD", error=str(exc) or "Failed to check balance")
