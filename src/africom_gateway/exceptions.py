"""Startup-time errors.

Nothing at request-serving time raises these: per-call failures are
reported as ``SendOutcome`` / ``DeliveryStatus`` values instead.
"""


class GatewayError(Exception):
    """Base class for gateway errors."""


class ProviderConfigurationError(GatewayError):
    """A provider adapter cannot be constructed or registered."""


class DuplicateProviderError(ProviderConfigurationError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Provider already registered: {name!r}")
        self.name = name


class PlaceholderProviderError(ProviderConfigurationError):
    def __init__(self, name: str) -> None:
        super().__init__(
            f"Provider {name!r} is a placeholder without a real upstream; "
            "set GATEWAY_ALLOW_PLACEHOLDER_PROVIDERS=true to register it"
        )
        self.name = name
