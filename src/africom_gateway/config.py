from pydantic import Field, PositiveInt, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewayConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GATEWAY_")

    log_level: str = "INFO"
    allow_placeholder_providers: bool = False
    # Latency assumed for adapters that have never been used when ranking
    # by speed, so untried adapters sort after measured ones.
    speed_default_latency_ms: float = 1000.0
    health_check_workers: int = 4
    bulk_batch_size: int = 50
    bulk_batch_delay_seconds: float = 1.0
    max_attempts: PositiveInt = 3
    # Indexed by attempt number; the last entry repeats for later attempts.
    retry_backoff_seconds: list[PositiveInt] = Field(default=[60, 300, 900], min_length=1)


class KairosConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="KAIROS_")

    api_key: str = ""
    api_secret: str = ""
    base_url: str = "https://api.kairosafrika.com/v1/external"
    timeout_seconds: float = 30.0
    priority: int = 1

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_secret)


class AfricasTalkingConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AFRICASTALKING_")

    api_key: str = ""
    username: str = ""
    base_url: str = "https://api.africastalking.com/version1"
    timeout_seconds: float = 30.0
    priority: int = 2

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.username)


class TwilioConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TWILIO_")

    account_sid: str = ""
    auth_token: str = ""
    phone_number: str = ""
    base_url: str = "https://api.twilio.com/2010-04-01"
    timeout_seconds: float = 30.0
    priority: int = 10

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token)


class SmtpConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SMTP_")

    host: str = ""
    port: int = 587
    user: str = ""
    password: str = ""
    use_tls: bool = True
    from_address: str = "noreply@africommunications.io"
    timeout_seconds: float = 30.0
    priority: int = 1
    currency: str = "GHS"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_configured(self) -> bool:
        return bool(self.host)


class RedisConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = "localhost"
    port: int = 6379
    db: int = 0


class RateLimitConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_")

    sms_per_minute: int = 50
    email_per_minute: int = 100
    window_seconds: int = 60

    def limit_for_channel(self, channel: str) -> int:
        """Return the per-window limit for a given channel."""
        limits = {
            "sms": self.sms_per_minute,
            "email": self.email_per_minute,
        }
        limit = limits.get(channel)
        if limit is None:
            raise ValueError(f"Unknown channel: {channel!r}")
        return limit


class CeleryConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CELERY_")

    broker_url: str = "redis://localhost:6379/0"
    result_backend: str = "redis://localhost:6379/1"
