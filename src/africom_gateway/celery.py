"""Celery application setup and worker initialization."""

import logging

from celery import Celery, signals
from kombu import Queue
from redis import Redis

from africom_gateway.bulk import BulkSender
from africom_gateway.config import CeleryConfig, GatewayConfig, RateLimitConfig, RedisConfig
from africom_gateway.log import setup_logging
from africom_gateway.providers import create_default_registry
from africom_gateway.rate_limiter import RateLimiter
from africom_gateway.router import Router

logger = logging.getLogger(__name__)

celery_config = CeleryConfig()

app = Celery(
    "africom_gateway",
    broker=celery_config.broker_url,
    backend=celery_config.result_backend,
)

app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_queues=[
        Queue("sms"),
        Queue("email"),
        Queue("bulk"),
    ],
    task_default_queue="sms",
)

app.autodiscover_tasks(["africom_gateway"])


@signals.worker_init.connect
def _init_worker(**_kwargs: object) -> None:
    """Build the registry and router once per worker process.

    A duplicate or disallowed provider raises here and stops the worker.
    """
    gateway_config = GatewayConfig()
    setup_logging(gateway_config.log_level)

    registry = create_default_registry(gateway_config)
    router = Router(
        registry,
        speed_default_latency_ms=gateway_config.speed_default_latency_ms,
    )
    bulk_sender = BulkSender(
        router,
        batch_size=gateway_config.bulk_batch_size,
        batch_delay_seconds=gateway_config.bulk_batch_delay_seconds,
    )

    redis_config = RedisConfig()
    redis_client = Redis(
        host=redis_config.host,
        port=redis_config.port,
        db=redis_config.db,
    )
    rate_limiter = RateLimiter(redis_client, RateLimitConfig())

    app.conf.update(
        _router=router,
        _bulk_sender=bulk_sender,
        _rate_limiter=rate_limiter,
        _gateway_config=gateway_config,
    )
    logger.info("Worker initialized", extra={"providers": registry.names()})


@signals.worker_shutdown.connect
def _shutdown_worker(**_kwargs: object) -> None:
    """Close upstream HTTP connection pools."""
    router: Router | None = getattr(app.conf, "_router", None)
    if router is not None:
        for provider in router.registry.all():
            close = getattr(provider, "close", None)
            if close is not None:
                close()
    logger.info("Worker shut down")
