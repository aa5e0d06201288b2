"""Test doubles for provider adapters."""

import threading

from africom_gateway.enums import Channel, DeliveryState, SendStatus
from africom_gateway.providers.base import (
    Balance,
    DeliveryStatus,
    ProviderAdapter,
    ProviderCapabilities,
    SendOptions,
    SendOutcome,
)


class MockAdapter(ProviderAdapter):
    """In-memory adapter with scripted results.

    Records every ``send`` call and updates stats the way real adapters
    do. Registered as a placeholder, so registries must allow those.
    """

    def __init__(
        self,
        name: str,
        countries: tuple[str, ...] = ("GH",),
        *,
        networks: tuple[str, ...] | None = None,
        priority: int = 1,
        channel: Channel = Channel.SMS,
        success: bool = True,
        status: SendStatus | None = None,
        external_id: str | None = None,
        error_code: str | None = None,
        latency_ms: float | None = 10.0,
        raises: Exception | None = None,
        delivery_state: DeliveryState = DeliveryState.UNKNOWN,
        balance: Balance | None = None,
        on_send: threading.Event | None = None,
    ) -> None:
        super().__init__(
            ProviderCapabilities(
                name=name,
                supported_countries=countries,
                supported_networks=networks,
                channel=channel,
                priority=priority,
                placeholder=True,
            )
        )
        self.success = success
        self.status = status or (SendStatus.SUBMITTED if success else SendStatus.PROVIDER_ERROR)
        self.external_id = external_id
        self.error_code = error_code
        self.latency_ms = latency_ms
        self.raises = raises
        self.delivery_state = delivery_state
        self.balance = balance or Balance(amount=100.0, currency="GHS")
        self.on_send = on_send
        self.calls: list[SendOptions] = []
        self.status_calls: list[str] = []

    def send(self, options: SendOptions) -> SendOutcome:
        self.calls.append(options)
        if self.on_send is not None:
            self.on_send.set()
        if self.raises is not None:
            raise self.raises
        self.stats.record_attempt(self.success, self.latency_ms)
        return self._outcome(
            self.success,
            self.status,
            "ok" if self.success else "failed",
            external_id=self.external_id if self.success else None,
            error_code=None if self.success else self.error_code,
        )

    def get_delivery_status(self, external_id: str) -> DeliveryStatus:
        self.status_calls.append(external_id)
        return DeliveryStatus(state=self.delivery_state, external_id=external_id)

    def check_balance(self) -> Balance:
        return self.balance


def make_options(recipient: str = "233241234567", **kwargs: object) -> SendOptions:
    fields: dict[str, object] = {"message": "Hello", "sender_id": "AfriCom", **kwargs}
    return SendOptions(recipient=recipient, **fields)  # type: ignore[arg-type]
