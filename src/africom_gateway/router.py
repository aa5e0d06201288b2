"""Destination-based routing with sequential failover.

Candidates are tried one at a time in priority order and iteration stops
at the first success, so a message is never accepted by two providers.
The router never raises: every path returns a ``SendOutcome``.
"""

import dataclasses
import logging
import threading
import time

from africom_gateway.enums import (
    ADAPTER_EXCEPTION,
    ALL_FAILED,
    CANCELLED,
    NO_PROVIDER,
    PROVIDER_MULTIPLE,
    PROVIDER_NONE,
    PROVIDER_ROUTER,
    ROUTING_ERROR,
    Channel,
    DeliveryState,
    SelectionCriterion,
    SendStatus,
)
from africom_gateway.providers import ProviderRegistry
from africom_gateway.providers.base import (
    DeliveryStatus,
    ProviderAdapter,
    SendOptions,
    SendOutcome,
    elapsed_ms,
    mask_recipient,
)

logger = logging.getLogger(__name__)


class Router:
    """Routes messages to adapters held by a ``ProviderRegistry``."""

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        speed_default_latency_ms: float = 1000.0,
    ) -> None:
        self._registry = registry
        self._speed_default_latency_ms = speed_default_latency_ms

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def candidates(
        self,
        country: str,
        network: str | None = None,
        channel: Channel | None = Channel.SMS,
    ) -> list[ProviderAdapter]:
        """Priority-ordered adapters eligible for the destination."""
        if network:
            return self._registry.get_for_network(country, network, channel)
        return self._registry.get_for_country(country, channel)

    def send(
        self,
        options: SendOptions,
        country: str,
        network: str | None = None,
        *,
        channel: Channel = Channel.SMS,
        cancel_event: threading.Event | None = None,
    ) -> SendOutcome:
        """Deliver *options* through the first candidate that accepts it.

        If every candidate fails, the last failure is returned with
        ``provider_id="multiple"`` and error code ``ALL_FAILED`` unless
        that failure already carried a code.
        """
        destination = f"{country}/{network}" if network else country
        log_ctx = {
            "country": country,
            "network": network,
            "channel": channel,
            "recipient": mask_recipient(options.recipient),
            "message_id": options.message_id,
        }

        try:
            providers = self.candidates(country, network, channel)
        except Exception as exc:
            logger.exception("Routing error", extra=log_ctx)
            return SendOutcome(
                success=False,
                status=SendStatus.FAILED,
                provider_id=PROVIDER_ROUTER,
                message=str(exc) or "Routing failed",
                error_code=ROUTING_ERROR,
            )

        if not providers:
            logger.error("No providers available", extra=log_ctx)
            return SendOutcome(
                success=False,
                status=SendStatus.FAILED,
                provider_id=PROVIDER_NONE,
                message=f"No {channel} providers available for {destination}",
                error_code=NO_PROVIDER,
            )

        logger.info(
            "Routing message",
            extra={**log_ctx, "candidates": [p.name for p in providers]},
        )

        failures: list[SendOutcome] = []
        attempted = 0
        for provider in providers:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(
                    "Routing cancelled",
                    extra={**log_ctx, "attempted": attempted, "remaining": len(providers) - attempted},
                )
                return SendOutcome(
                    success=False,
                    status=SendStatus.FAILED,
                    provider_id=PROVIDER_ROUTER,
                    message=f"Cancelled after {attempted} of {len(providers)} providers",
                    error_code=CANCELLED,
                )

            attempted += 1
            outcome = self._attempt(provider, options, log_ctx)

            if outcome.success:
                logger.info(
                    "Message sent",
                    extra={
                        **log_ctx,
                        "provider": provider.name,
                        "status": outcome.status,
                        "external_id": outcome.external_id,
                        "attempts": attempted,
                    },
                )
                return outcome

            logger.warning(
                "Provider failed, trying next",
                extra={
                    **log_ctx,
                    "provider": provider.name,
                    "status": outcome.status,
                    "error_code": outcome.error_code,
                    "reason": outcome.message,
                },
            )
            failures.append(outcome)

        # providers is non-empty and every candidate failed, so failures is too.
        logger.error("All providers failed", extra={**log_ctx, "tried": attempted})
        last_failure = failures[-1]
        return dataclasses.replace(
            last_failure,
            provider_id=PROVIDER_MULTIPLE,
            message=last_failure.message or "All providers failed",
            error_code=last_failure.error_code or ALL_FAILED,
        )

    def _attempt(
        self,
        provider: ProviderAdapter,
        options: SendOptions,
        log_ctx: dict[str, object],
    ) -> SendOutcome:
        """Call ``provider.send``, converting a contract-breaking raise."""
        logger.debug("Attempting provider", extra={**log_ctx, "provider": provider.name})
        started = time.monotonic()
        try:
            return provider.send(options)
        except Exception as exc:
            provider.stats.record_attempt(False, elapsed_ms(started))
            logger.exception("Provider raised, trying next", extra={**log_ctx, "provider": provider.name})
            return SendOutcome(
                success=False,
                status=SendStatus.PROVIDER_ERROR,
                provider_id=provider.provider_id,
                message=str(exc) or type(exc).__name__,
                error_code=ADAPTER_EXCEPTION,
            )

    def get_best_provider(
        self,
        country: str,
        network: str | None = None,
        criterion: SelectionCriterion = SelectionCriterion.COST,
        *,
        channel: Channel = Channel.SMS,
    ) -> ProviderAdapter | None:
        """Pick one adapter for the destination without sending.

        ``speed`` and ``reliability`` re-sort the priority-ordered list
        with a stable sort, so equal metrics keep priority order.
        """
        providers = self.candidates(country, network, channel)
        if not providers:
            return None

        if criterion == SelectionCriterion.SPEED:
            default = self._speed_default_latency_ms
            return sorted(providers, key=lambda p: p.stats.avg_latency_ms or default)[0]

        if criterion == SelectionCriterion.RELIABILITY:
            return sorted(providers, key=lambda p: p.stats.success_rate, reverse=True)[0]

        return providers[0]

    def check_delivery_status(
        self,
        external_id: str,
        provider_name: str | None = None,
    ) -> DeliveryStatus:
        """Look up delivery state for *external_id*.

        With *provider_name* only that adapter is asked; otherwise every
        adapter is queried in registration order and the first answer
        other than ``UNKNOWN`` wins.
        """
        if provider_name is not None:
            provider = self._registry.get_by_name(provider_name)
            if provider is None:
                return DeliveryStatus(
                    state=DeliveryState.UNKNOWN,
                    external_id=external_id,
                    error=f"Unknown provider: {provider_name!r}",
                )
            return self._lookup(provider, external_id) or DeliveryStatus(
                state=DeliveryState.UNKNOWN,
                external_id=external_id,
                error=f"Status lookup failed on {provider_name!r}",
            )

        for provider in self._registry.all():
            status = self._lookup(provider, external_id)
            if status is not None and status.state != DeliveryState.UNKNOWN:
                return status

        return DeliveryStatus(
            state=DeliveryState.UNKNOWN,
            external_id=external_id,
            error="Could not get status from any provider",
        )

    @staticmethod
    def _lookup(provider: ProviderAdapter, external_id: str) -> DeliveryStatus | None:
        try:
            return provider.get_delivery_status(external_id)
        except Exception:
            logger.exception(
                "Delivery status lookup raised",
                extra={"provider": provider.name, "external_id": external_id},
            )
            return None
