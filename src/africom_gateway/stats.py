"""Per-adapter delivery statistics."""

import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StatsSnapshot:
    """Consistent read of a ``ProviderStats`` at one point in time."""

    total_sent: int
    total_delivered: int
    total_failed: int
    success_rate: float
    avg_latency_ms: float
    last_used: datetime | None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_used"] = self.last_used.isoformat() if self.last_used else None
        return data


class ProviderStats:
    """Rolling counters for one adapter, safe for concurrent callers.

    Counters are never reset and live for the process lifetime. The
    success rate is derived from the counters on every read.
    """

    def __init__(self, provider: str = "") -> None:
        self._provider = provider
        self._lock = threading.Lock()
        self._total_sent = 0
        self._total_delivered = 0
        self._total_failed = 0
        self._avg_latency_ms = 0.0
        self._last_used: datetime | None = None

    def record_attempt(self, success: bool, latency_ms: float | None = None) -> None:
        """Fold one send attempt into the counters.

        The latency average is incremental:
        ``new = (old * (n - 1) + latency) / n`` with ``n`` the attempt
        count after this attempt.
        """
        with self._lock:
            self._total_sent += 1
            if success:
                self._total_delivered += 1
            else:
                self._total_failed += 1

            if latency_ms is not None:
                n = self._total_sent
                self._avg_latency_ms = (self._avg_latency_ms * (n - 1) + latency_ms) / n

            self._last_used = datetime.now(timezone.utc)
            snapshot = self._snapshot_locked()

        logger.debug(
            "Provider stats updated",
            extra={"provider": self._provider, "stats": snapshot.to_dict()},
        )

    @property
    def total_sent(self) -> int:
        with self._lock:
            return self._total_sent

    @property
    def total_delivered(self) -> int:
        with self._lock:
            return self._total_delivered

    @property
    def total_failed(self) -> int:
        with self._lock:
            return self._total_failed

    @property
    def success_rate(self) -> float:
        with self._lock:
            return self._success_rate_locked()

    @property
    def avg_latency_ms(self) -> float:
        with self._lock:
            return self._avg_latency_ms

    @property
    def last_used(self) -> datetime | None:
        with self._lock:
            return self._last_used

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def _success_rate_locked(self) -> float:
        if self._total_sent == 0:
            return 0.0
        return self._total_delivered / self._total_sent * 100

    def _snapshot_locked(self) -> StatsSnapshot:
        return StatsSnapshot(
            total_sent=self._total_sent,
            total_delivered=self._total_delivered,
            total_failed=self._total_failed,
            success_rate=self._success_rate_locked(),
            avg_latency_ms=self._avg_latency_ms,
            last_used=self._last_used,
        )
