"""Kairos Afrika SMS provider (Ghana)."""

import logging
import re
from datetime import datetime, timezone

import httpx

from africom_gateway.config import KairosConfig
from africom_gateway.enums import DeliveryState, SendStatus
from africom_gateway.exceptions import ProviderConfigurationError
from africom_gateway.providers.base import (
    Balance,
    DeliveryStatus,
    ProviderCapabilities,
    SendOptions,
    SendOutcome,
)
from africom_gateway.providers.http import (
    MALFORMED_RESPONSE_ERRORS,
    HttpProviderAdapter,
    as_dict,
    error_body,
    json_object,
)

logger = logging.getLogger(__name__)

_GHANA_MSISDN_RE = re.compile(r"^233[2345][0-9]{8}$")
_SENDER_ID_RE = re.compile(r"^[a-zA-Z0-9\s]+$")

_STATUS_MAP: dict[int, SendStatus] = {
    200: SendStatus.SUBMITTED,
    201: SendStatus.SUBMITTED,
    400: SendStatus.INVALID_PARAMETERS,
    401: SendStatus.AUTHENTICATION_ERROR,
    403: SendStatus.INSUFFICIENT_CREDIT,
    500: SendStatus.PROVIDER_ERROR,
}

_DELIVERY_MAP: dict[str, DeliveryState] = {
    "pending": DeliveryState.SENT,
    "accepted": DeliveryState.SENT,
    "submitted": DeliveryState.SENT,
    "success": DeliveryState.DELIVERED,
    "delivered": DeliveryState.DELIVERED,
    "failed": DeliveryState.FAILED,
    "undelivered": DeliveryState.FAILED,
    "rejected": DeliveryState.FAILED,
}

CURRENCY = "GHS"


def map_status_code(status_code: int | None) -> SendStatus:
    if status_code is None:
        return SendStatus.REJECTED
    if status_code >= 500:
        return SendStatus.PROVIDER_ERROR
    return _STATUS_MAP.get(status_code, SendStatus.REJECTED)


def map_delivery_state(raw: str | None) -> DeliveryState:
    return _DELIVERY_MAP.get((raw or "").lower(), DeliveryState.UNKNOWN)


class KairosProvider(HttpProviderAdapter):
    """Sends through the Kairos Afrika quick-send API.

    Only Ghanaian numbers in international form (``233XXXXXXXXX``) are
    accepted; anything else is rejected locally before a request is made.
    """

    invalid_error_code = "1702"
    generic_error_code = "1710"

    def __init__(
        self,
        config: KairosConfig,
        capabilities: ProviderCapabilities | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        if not config.is_configured:
            raise ProviderConfigurationError("Kairos requires KAIROS_API_KEY and KAIROS_API_SECRET")

        capabilities = capabilities or ProviderCapabilities(
            name="kairos",
            supported_countries=("GH",),
            supported_networks=("mtn", "telecel", "at"),
            priority=config.priority,
            timeout_seconds=config.timeout_seconds,
        )
        super().__init__(capabilities, config.base_url, client)
        self._headers = {
            "x-api-key": config.api_key,
            "x-api-secret": config.api_secret,
            "Accept": "application/json",
        }

    def validate(self, options: SendOptions) -> str | None:
        reason = super().validate(options)
        if reason is not None:
            return reason
        if not _GHANA_MSISDN_RE.match(options.recipient):
            return "Invalid Ghana phone number format. Must be 233XXXXXXXXX"
        if not 3 <= len(options.sender_id) <= 11:
            return "Sender ID must be between 3 and 11 characters"
        if not _SENDER_ID_RE.match(options.sender_id):
            return "Sender ID can only contain letters, numbers, and spaces"
        return None

    def _deliver(self, options: SendOptions) -> SendOutcome:
        response = self._request(
            "POST",
            "sms/quick",
            json={
                "to": options.recipient,
                "from": options.sender_id,
                "message": options.message,
            },
            headers=self._headers,
        )
        return self._parse_send_response(response, options.message_id)

    def _parse_send_response(
        self,
        response: httpx.Response,
        message_id: str | None,
    ) -> SendOutcome:
        # Outage pages from the upstream gateway are usually HTML.
        if response.status_code >= 500:
            body = error_body(response)
            return self._outcome(
                False,
                SendStatus.PROVIDER_ERROR,
                body.get("statusMessage") or f"Kairos returned HTTP {response.status_code}",
                error_code=str(response.status_code),
            )

        body = error_body(response) if response.is_error else json_object(response)
        status_code = body.get("statusCode", response.status_code)
        status_message = body.get("statusMessage")

        if body.get("success") is True and status_code in (200, 201):
            data = as_dict(body.get("data"))
            return self._outcome(
                True,
                SendStatus.SUBMITTED,
                status_message or "Message submitted successfully",
                external_id=data.get("id") or data.get("uuid") or message_id,
            )

        return self._outcome(
            False,
            map_status_code(int(status_code)) if status_code is not None else SendStatus.REJECTED,
            status_message or "Failed to send SMS",
            error_code=str(status_code) if status_code is not None else self.generic_error_code,
        )

    def get_delivery_status(self, external_id: str) -> DeliveryStatus:
        logger.debug("Checking delivery status", extra={"provider": self.name, "external_id": external_id})
        try:
            response = self._request("GET", f"sms/{external_id}/status", headers=self._headers)
            body = json_object(response)
            data = as_dict(body.get("data"))
            state = map_delivery_state(data.get("status") or body.get("status"))
        except (httpx.HTTPError, *MALFORMED_RESPONSE_ERRORS) as exc:
            logger.warning(
                "Delivery status check failed",
                extra={"provider": self.name, "external_id": external_id, "error": str(exc)},
            )
            return DeliveryStatus(
                state=DeliveryState.UNKNOWN,
                external_id=external_id,
                error=str(exc) or "Failed to get delivery status",
            )

        return DeliveryStatus(
            state=state,
            external_id=external_id,
            timestamp=datetime.now(timezone.utc),
            error=None if body.get("success") else body.get("statusMessage"),
        )

    def check_balance(self) -> Balance:
        try:
            response = self._request("GET", "account/balance", headers=self._headers)
            body = error_body(response) if response.is_error else json_object(response)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Balance check failed", extra={"provider": self.name, "error": str(exc)})
            return Balance(amount=0.0, currency=CURRENCY, error=str(exc) or "Failed to check balance")

        data = as_dict(body.get("data"))
        if body.get("success") and data:
            try:
                amount = float(data.get("balance") or 0)
            except (TypeError, ValueError):
                amount = 0.0
            return Balance(amount=amount, currency=CURRENCY)

        return Balance(
            amount=0.0,
            currency=CURRENCY,
            error=body.get("statusMessage") or f"Failed to get balance (HTTP {response.status_code})",
        )
