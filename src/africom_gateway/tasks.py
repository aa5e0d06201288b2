"""Celery tasks for routed message delivery."""

import logging
from typing import Any

from pydantic import ValidationError

from africom_gateway.bulk import BulkMessage, BulkSender
from africom_gateway.celery import app
from africom_gateway.config import GatewayConfig
from africom_gateway.enums import (
    ALL_FAILED,
    PROVIDER_ROUTER,
    ROUTING_ERROR,
    SendStatus,
)
from africom_gateway.providers.base import SendOutcome, mask_recipient
from africom_gateway.rate_limiter import RateLimiter
from africom_gateway.router import Router
from africom_gateway.schemas import BulkSendRequest, SendRequest

logger = logging.getLogger(__name__)

_RATE_LIMIT_RETRY_SECONDS = 10
_RETRYABLE_CODES = frozenset({ALL_FAILED, ROUTING_ERROR, "TIMEOUT"})


@app.task(name="africom_gateway.tasks.send_message")
def send_message(payload: dict[str, Any], attempt: int = 1) -> dict[str, Any] | None:
    """Route a single message and return its outcome.

    Rate-limited messages are re-queued without consuming an attempt.
    Retryable failures are re-queued with backoff until the configured
    ``max_attempts`` is reached. Returns None when the message was
    re-queued because of the rate limit.
    """
    router: Router = app.conf._router
    rate_limiter: RateLimiter = app.conf._rate_limiter
    gateway_config: GatewayConfig = app.conf._gateway_config

    try:
        request = SendRequest.model_validate(payload)
    except ValidationError as exc:
        return _invalid_request("send", exc)

    log_ctx = {
        "message_id": request.message_id,
        "recipient": mask_recipient(request.recipient),
        "channel": request.channel,
        "account_id": request.account_id,
        "attempt": attempt,
    }

    if not rate_limiter.acquire(request.channel, request.account_id):
        logger.info("Rate limited, rescheduling", extra=log_ctx)
        _requeue(payload, attempt, _RATE_LIMIT_RETRY_SECONDS)
        return None

    outcome = router.send(
        request.to_options(),
        request.country,
        request.network,
        channel=request.channel,
    )

    if outcome.success:
        logger.info(
            "Delivery succeeded",
            extra={**log_ctx, "provider": outcome.provider_id, "external_id": outcome.external_id},
        )
        return outcome.to_dict()

    if is_retryable(outcome) and attempt < gateway_config.max_attempts:
        backoff = _get_backoff(attempt, gateway_config.retry_backoff_seconds)
        logger.warning(
            "Delivery failed, scheduling retry",
            extra={**log_ctx, "backoff_seconds": backoff, "reason": outcome.message},
        )
        _requeue(payload, attempt + 1, backoff)
    else:
        logger.error(
            "Delivery permanently failed",
            extra={**log_ctx, "status": outcome.status, "error_code": outcome.error_code},
        )
    return outcome.to_dict()


@app.task(name="africom_gateway.tasks.send_bulk")
def send_bulk(payload: dict[str, Any]) -> dict[str, Any]:
    """Send one message to many recipients, paced in batches.

    An invalid payload returns the same ``INVALID_REQUEST`` outcome as
    ``send_message`` instead of raising.
    """
    bulk_sender: BulkSender = app.conf._bulk_sender

    try:
        request = BulkSendRequest.model_validate(payload)
    except ValidationError as exc:
        return _invalid_request("bulk send", exc)

    result = bulk_sender.send(
        request.recipients,
        BulkMessage(
            message=request.message,
            sender_id=request.sender_id,
            subject=request.subject,
            metadata=request.metadata,
        ),
        request.country,
        request.network,
        channel=request.channel,
        batch_id=request.batch_id,
    )
    return result.to_dict()


def is_retryable(outcome: SendOutcome) -> bool:
    """Whether another attempt later could plausibly succeed."""
    if outcome.success:
        return False
    if outcome.status == SendStatus.PROVIDER_ERROR:
        return True
    return outcome.error_code in _RETRYABLE_CODES


def _invalid_request(kind: str, exc: ValidationError) -> dict[str, Any]:
    """Outcome for a payload that failed validation; never retried."""
    logger.warning("Invalid request payload", extra={"kind": kind, "errors": exc.errors(include_url=False)})
    return SendOutcome(
        success=False,
        status=SendStatus.INVALID_PARAMETERS,
        provider_id=PROVIDER_ROUTER,
        message=f"{kind.capitalize()} request failed validation",
        error_code="INVALID_REQUEST",
    ).to_dict()


def _requeue(payload: dict[str, Any], attempt: int, countdown: int) -> None:
    """Re-enqueue the task with a delay."""
    app.send_task(
        "africom_gateway.tasks.send_message",
        kwargs={"payload": payload, "attempt": attempt},
        countdown=countdown,
    )


def _get_backoff(attempt: int, schedule: list[int]) -> int:
    """Return backoff seconds for the given attempt number (1-based).

    Falls back to the last value in *schedule* when attempt exceeds the
    length of the list.
    """
    idx = min(attempt - 1, len(schedule) - 1)
    return schedule[idx]
