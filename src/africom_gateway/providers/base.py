"""Provider adapter contract and the value types it exchanges."""

import logging
import math
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from africom_gateway.enums import Channel, DeliveryState, SendStatus
from africom_gateway.stats import ProviderStats

logger = logging.getLogger(__name__)

WILDCARD = "*"
DEFAULT_PRIORITY = 999

_E164_RE = re.compile(r"^\+?[1-9]\d{1,14}$")
_GSM7_RE = re.compile(
    "^[@£$¥èéùìòÇ\nØø\rÅåΔ_ΦΓΛΩΠΨΣΘΞÆæßÉ !\"#¤%&'()*+,\\-./0-9:;<=>?¡A-Z"
    "ÄÖÑÜ§¿a-zäöñüà]*$"
)

# National dial codes used to expand numbers written with a trunk prefix.
DIAL_CODES: dict[str, str] = {
    "GH": "233",
    "NG": "234",
    "KE": "254",
    "ZA": "27",
    "UG": "256",
    "TZ": "255",
    "RW": "250",
    "CI": "225",
    "SN": "221",
    "CM": "237",
}


@dataclass(frozen=True, slots=True)
class ProviderCapabilities:
    """Static routing descriptor for one adapter.

    ``supported_networks=None`` means every network of the supported
    countries. ``placeholder`` marks adapters that never reach a real
    upstream; the registry refuses them unless explicitly allowed.
    """

    name: str
    supported_countries: tuple[str, ...]
    supported_networks: tuple[str, ...] | None = None
    channel: Channel = Channel.SMS
    priority: int = DEFAULT_PRIORITY
    max_retries: int = 0
    timeout_seconds: float = 30.0
    placeholder: bool = False

    def supports_country(self, country_code: str) -> bool:
        return WILDCARD in self.supported_countries or country_code in self.supported_countries

    def supports_network(self, network: str) -> bool:
        if self.supported_networks is None:
            return True
        return network in self.supported_networks


@dataclass(frozen=True, slots=True)
class SendOptions:
    """A single message, already normalised by the caller."""

    recipient: str
    message: str
    sender_id: str
    message_id: str | None = None
    subject: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SendOutcome:
    """Unified result of a send attempt, successful or not."""

    success: bool
    status: SendStatus
    provider_id: str
    external_id: str | None = None
    message: str = ""
    error_code: str | None = None
    cost: float | None = None
    currency: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = str(self.status)
        data["metadata"] = dict(self.metadata)
        return data


@dataclass(frozen=True, slots=True)
class DeliveryStatus:
    state: DeliveryState
    external_id: str
    timestamp: datetime | None = None
    error: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Balance:
    amount: float
    currency: str
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ProviderHealth:
    healthy: bool
    message: str
    balance: float | None = None
    currency: str | None = None


class ProviderAdapter(ABC):
    """Base class for every upstream SMS/email integration.

    Implementations must not raise from ``send`` or
    ``get_delivery_status``: per-call failures are returned as values.
    Every ``send`` call records exactly one attempt on ``self.stats``
    before returning.
    """

    def __init__(self, capabilities: ProviderCapabilities) -> None:
        self.capabilities = capabilities
        self.stats = ProviderStats(capabilities.name)
        logger.info(
            "Provider initialized",
            extra={
                "provider": capabilities.name,
                "channel": capabilities.channel,
                "countries": list(capabilities.supported_countries),
                "priority": capabilities.priority,
            },
        )

    @property
    def name(self) -> str:
        return self.capabilities.name

    @property
    def provider_id(self) -> str:
        return self.capabilities.name

    @abstractmethod
    def send(self, options: SendOptions) -> SendOutcome:
        """Attempt one delivery, bounded by ``capabilities.timeout_seconds``."""

    @abstractmethod
    def get_delivery_status(self, external_id: str) -> DeliveryStatus:
        """Look up delivery state; ``UNKNOWN`` when it cannot be confirmed."""

    @abstractmethod
    def check_balance(self) -> Balance:
        """Return the account balance, with ``error`` set on failure."""

    def supports_country(self, country_code: str) -> bool:
        return self.capabilities.supports_country(country_code)

    def supports_network(self, network: str) -> bool:
        return self.capabilities.supports_network(network)

    def health_check(self) -> ProviderHealth:
        """Healthy iff the balance lookup succeeds with a non-negative amount."""
        try:
            balance = self.check_balance()
        except Exception as exc:
            logger.exception("Provider health check failed", extra={"provider": self.name})
            return ProviderHealth(healthy=False, message=str(exc) or "Health check failed")

        if balance.error:
            return ProviderHealth(healthy=False, message=balance.error)
        if balance.amount < 0:
            return ProviderHealth(
                healthy=False,
                message="Negative balance",
                balance=balance.amount,
                currency=balance.currency,
            )
        return ProviderHealth(
            healthy=True,
            message="Provider is healthy",
            balance=balance.amount,
            currency=balance.currency,
        )

    def _outcome(
        self,
        success: bool,
        status: SendStatus,
        message: str,
        **kwargs: Any,
    ) -> SendOutcome:
        return SendOutcome(
            success=success,
            status=status,
            provider_id=self.provider_id,
            message=message,
            **kwargs,
        )

    def _reject_invalid(self, options: SendOptions, reason: str, error_code: str) -> SendOutcome:
        """Record a failed attempt for a local validation error."""
        logger.warning(
            "Provider validation failed",
            extra={
                "provider": self.name,
                "recipient": mask_recipient(options.recipient),
                "sender_id": options.sender_id,
                "reason": reason,
            },
        )
        self.stats.record_attempt(False)
        return self._outcome(
            False,
            SendStatus.INVALID_PARAMETERS,
            reason,
            error_code=error_code,
        )


def elapsed_ms(started: float) -> float:
    """Milliseconds since a ``time.monotonic()`` reading."""
    return (time.monotonic() - started) * 1000


def mask_recipient(recipient: str) -> str:
    """Hide the middle of a phone number or address for logging."""
    if len(recipient) <= 4:
        return "***"
    return f"{recipient[:4]}***{recipient[-3:]}"


def validate_e164(phone: str) -> bool:
    return bool(_E164_RE.match(phone))


def normalize_phone_number(phone: str, country_code: str) -> str:
    """Strip formatting and expand a leading trunk ``0`` to the dial code.

    ``"024 123 4567"`` for GH becomes ``"233241234567"``. Countries
    without a known dial code keep their digits as-is.
    """
    cleaned = re.sub(r"[^\d+]", "", phone)
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]

    if cleaned.startswith("0"):
        code = DIAL_CODES.get(country_code.upper())
        if code:
            cleaned = code + cleaned[1:]

    return cleaned


def count_sms_units(message: str) -> int:
    """Number of SMS segments needed for *message*.

    GSM-7 text fits 160 characters in one segment and 153 per segment
    when concatenated; anything else is UCS-2 with 70 and 67.
    """
    length = len(message)
    if _GSM7_RE.match(message):
        return 1 if length <= 160 else math.ceil(length / 153)
    return 1 if length <= 70 else math.ceil(length / 67)
