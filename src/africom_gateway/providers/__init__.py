"""Provider registry for destination-based routing."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from africom_gateway.config import (
    AfricasTalkingConfig,
    GatewayConfig,
    KairosConfig,
    SmtpConfig,
    TwilioConfig,
)
from africom_gateway.enums import Channel
from africom_gateway.exceptions import DuplicateProviderError, PlaceholderProviderError
from africom_gateway.providers.africastalking import AfricasTalkingProvider
from africom_gateway.providers.base import ProviderAdapter, ProviderHealth
from africom_gateway.providers.kairos import KairosProvider
from africom_gateway.providers.smtp import SmtpProvider
from africom_gateway.providers.twilio import TwilioProvider

logger = logging.getLogger(__name__)

__all__ = ["ProviderRegistry", "create_default_registry"]


class ProviderRegistry:
    """Holds configured adapters and answers "who can serve X" queries.

    Registration is append-only; once startup is over every lookup is a
    pure read. Candidate lists are sorted by priority with a stable sort,
    so adapters of equal priority keep their registration order.
    """

    def __init__(self, *, allow_placeholders: bool = False, health_check_workers: int = 4) -> None:
        self._providers: dict[str, ProviderAdapter] = {}
        self._allow_placeholders = allow_placeholders
        self._health_check_workers = health_check_workers

    def register(self, provider: ProviderAdapter) -> None:
        """Add *provider* under its unique name.

        Raises DuplicateProviderError if the name is taken and
        PlaceholderProviderError for placeholder adapters when those
        are not allowed.
        """
        name = provider.name
        if name in self._providers:
            raise DuplicateProviderError(name)
        if provider.capabilities.placeholder and not self._allow_placeholders:
            raise PlaceholderProviderError(name)
        self._providers[name] = provider
        logger.info("Provider registered", extra={"provider": name})

    def get_by_name(self, name: str) -> ProviderAdapter | None:
        return self._providers.get(name)

    def all(self) -> list[ProviderAdapter]:
        """Every adapter, in registration order."""
        return list(self._providers.values())

    def names(self) -> list[str]:
        return list(self._providers)

    def get_for_country(
        self,
        country_code: str,
        channel: Channel | None = None,
    ) -> list[ProviderAdapter]:
        candidates = [
            p
            for p in self._providers.values()
            if p.supports_country(country_code)
            and (channel is None or p.capabilities.channel == channel)
        ]
        return sorted(candidates, key=lambda p: p.capabilities.priority)

    def get_for_network(
        self,
        country_code: str,
        network: str,
        channel: Channel | None = None,
    ) -> list[ProviderAdapter]:
        return [
            p for p in self.get_for_country(country_code, channel) if p.supports_network(network)
        ]

    def health_check_all(self) -> dict[str, ProviderHealth]:
        """Run every adapter's balance-based health check concurrently."""
        providers = self.all()
        if not providers:
            return {}

        workers = max(1, min(self._health_check_workers, len(providers)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="health") as pool:
            results = pool.map(lambda p: (p.name, p.health_check()), providers)
            return dict(results)

    def stats_report(self) -> dict[str, dict[str, Any]]:
        report: dict[str, dict[str, Any]] = {}
        for name, provider in self._providers.items():
            caps = provider.capabilities
            report[name] = {
                **provider.stats.snapshot().to_dict(),
                "config": {
                    "channel": str(caps.channel),
                    "countries": list(caps.supported_countries),
                    "networks": list(caps.supported_networks) if caps.supported_networks else None,
                    "priority": caps.priority,
                },
            }
        return report

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers


def create_default_registry(
    gateway_config: GatewayConfig | None = None,
    *,
    kairos: KairosConfig | None = None,
    africastalking: AfricasTalkingConfig | None = None,
    twilio: TwilioConfig | None = None,
    smtp: SmtpConfig | None = None,
) -> ProviderRegistry:
    """Create a registry with every provider whose credentials are set.

    Configuration is read from the environment unless passed in.
    """
    gateway_config = gateway_config or GatewayConfig()
    registry = ProviderRegistry(
        allow_placeholders=gateway_config.allow_placeholder_providers,
        health_check_workers=gateway_config.health_check_workers,
    )

    kairos = kairos or KairosConfig()
    if kairos.is_configured:
        registry.register(KairosProvider(kairos))

    africastalking = africastalking or AfricasTalkingConfig()
    if africastalking.is_configured:
        registry.register(AfricasTalkingProvider(africastalking))

    twilio = twilio or TwilioConfig()
    if twilio.is_configured:
        registry.register(TwilioProvider(twilio))

    smtp = smtp or SmtpConfig()
    if smtp.is_configured:
        registry.register(SmtpProvider(smtp))

    logger.info(
        "Providers initialized",
        extra={"active": len(registry), "providers": registry.names()},
    )
    return registry
