"""Batched sending to many recipients with pacing between batches."""

import logging
import secrets
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from africom_gateway.enums import Channel
from africom_gateway.providers.base import SendOptions, SendOutcome
from africom_gateway.router import Router

logger = logging.getLogger(__name__)


def new_batch_id() -> str:
    return f"batch_{secrets.token_hex(16)}"


@dataclass(frozen=True, slots=True)
class BulkMessage:
    """Content shared by every recipient of a bulk send."""

    message: str
    sender_id: str
    subject: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class BulkResult:
    batch_id: str
    total: int
    outcomes: list[SendOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def sent(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def skipped(self) -> int:
        return self.total - len(self.outcomes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "total": self.total,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class BulkSender:
    """Sends one message to many recipients through a ``Router``.

    Messages go out one at a time; after each batch of *batch_size* the
    sender pauses for *batch_delay_seconds* to stay under upstream rate
    limits. There is no pause after the final batch.
    """

    def __init__(
        self,
        router: Router,
        *,
        batch_size: int = 50,
        batch_delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._router = router
        self._batch_size = batch_size
        self._batch_delay_seconds = batch_delay_seconds
        self._sleep = sleep

    def send(
        self,
        recipients: Sequence[str],
        content: BulkMessage,
        country: str,
        network: str | None = None,
        *,
        channel: Channel = Channel.SMS,
        batch_id: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BulkResult:
        batch_id = batch_id or new_batch_id()
        result = BulkResult(batch_id=batch_id, total=len(recipients))
        log_ctx = {"batch_id": batch_id, "total": len(recipients), "country": country}
        logger.info("Bulk send started", extra=log_ctx)

        for start in range(0, len(recipients), self._batch_size):
            batch = recipients[start:start + self._batch_size]
            for index, recipient in enumerate(batch, start=start):
                if cancel_event is not None and cancel_event.is_set():
                    result.cancelled = True
                    logger.warning("Bulk send cancelled", extra={**log_ctx, "processed": index})
                    return result

                options = SendOptions(
                    recipient=recipient,
                    message=content.message,
                    sender_id=content.sender_id,
                    message_id=f"{batch_id}_{index}",
                    subject=content.subject,
                    metadata={**content.metadata, "batch_id": batch_id},
                )
                result.outcomes.append(
                    self._router.send(
                        options,
                        country,
                        network,
                        channel=channel,
                        cancel_event=cancel_event,
                    )
                )

            if start + self._batch_size < len(recipients):
                self._sleep(self._batch_delay_seconds)

        logger.info(
            "Bulk send finished",
            extra={**log_ctx, "sent": result.sent, "failed": result.failed},
        )
        return result
