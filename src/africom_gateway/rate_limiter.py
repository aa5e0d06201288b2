"""Per-channel sliding window limits on outbound sends, kept in Redis."""

import logging
import time
import uuid

from redis import Redis

from africom_gateway.config import RateLimitConfig

logger = logging.getLogger(__name__)

# KEYS[1]: window key. ARGV: cutoff score, limit, now, unique member, TTL.
# Returns {1, count} when the send was recorded, {0, count} when the
# window is already full. Runs as a single EVAL, so workers never race.
_SLIDING_WINDOW_LUA = """
redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
local used = redis.call('ZCARD', KEYS[1])
if used >= tonumber(ARGV[2]) then
    return {0, used}
end
redis.call('ZADD', KEYS[1], ARGV[3], ARGV[4])
redis.call('EXPIRE', KEYS[1], ARGV[5])
return {1, used + 1}
"""


class RateLimiter:
    """Counts recent sends per channel in a Redis sorted set.

    Members are scored by send time. Keys are ``ratelimit:<channel>``, or
    ``ratelimit:<channel>:<scope>`` when the caller limits one account
    separately from the rest.
    """

    KEY_PREFIX = "ratelimit"

    def __init__(self, redis_client: Redis, config: RateLimitConfig) -> None:
        self._config = config
        self._script = redis_client.register_script(_SLIDING_WINDOW_LUA)

    def key_for(self, channel: str, scope: str | None = None) -> str:
        parts = [self.KEY_PREFIX, channel]
        if scope:
            parts.append(scope)
        return ":".join(parts)

    def acquire(self, channel: str, scope: str | None = None) -> bool:
        """Record one send for *channel*; False when the window is full."""
        limit = self._config.limit_for_channel(channel)
        window = self._config.window_seconds
        key = self.key_for(channel, scope)
        now = time.time()

        allowed, used = self._script(
            keys=[key],
            args=[now - window, limit, now, uuid.uuid4().hex, window + 1],
        )
        if not allowed:
            logger.debug("Rate limit reached", extra={"key": key, "used": used, "limit": limit})
        return bool(allowed)
