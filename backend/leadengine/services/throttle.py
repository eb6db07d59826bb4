"""Redis-backed intake rate limiting and circuit breaking for external collaborators."""

import time

import redis as redis_lib
import structlog

from leadengine.config import settings
from leadengine.errors import RateLimitError

logger = structlog.get_logger()

_redis: redis_lib.Redis | None = None


def get_redis() -> redis_lib.Redis:
    global _redis
    if _redis is None:
        _redis = redis_lib.from_url(settings.redis_url, decode_responses=True)
    return _redis


class IntakeRateLimiter:
    """Caps submissions per (channel, email) pair inside a fixed window."""

    def __init__(self, limit: int | None = None, window_seconds: int | None = None, r: redis_lib.Redis | None = None):
        self.limit = limit if limit is not None else settings.intake_rate_limit
        self.window_seconds = window_seconds if window_seconds is not None else settings.intake_rate_window_seconds
        self.r = r if r is not None else get_redis()

    def _key(self, channel: str, email: str) -> str:
        window = int(time.time() // self.window_seconds)
        return f"intake:{channel}:{email}:{window}"

    def hit(self, channel: str, email: str) -> int:
        """Count one submission; raise once the pair is over the limit."""
        key = self._key(channel, email)
        pipe = self.r.pipeline()
        pipe.incr(key)
        pipe.expire(key, self.window_seconds * 2)
        current, _ = pipe.execute()
        current = int(current)
        if current > self.limit:
            logger.warning("intake_rate_limited", channel=channel, email=email, count=current)
            raise RateLimitError(
                f"Rate limit exceeded: {current}/{self.limit} submissions in {self.window_seconds}s",
                retry_after=self.window_seconds,
            )
        return current


class CircuitOpenError(Exception):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class CircuitBreaker:
    """Opens after repeated failures of a named collaborator; half-opens after a timeout."""

    FAILURE_THRESHOLD = 5  # failures before circuit opens
    CIRCUIT_TIMEOUT = 300  # seconds before half-open retry

    def __init__(self, name: str, r: redis_lib.Redis | None = None):
        self.name = name
        self.r = r if r is not None else get_redis()

    def _key(self) -> str:
        return f"circuit:{self.name}"

    def check(self) -> None:
        """Raise if circuit is open."""
        key = self._key()
        data = self.r.hgetall(key)
        if not data:
            return
        state = data.get("state", "closed")
        if state == "open":
            opened_at = float(data.get("opened_at", 0))
            if time.time() - opened_at > self.CIRCUIT_TIMEOUT:
                # Half-open: allow one attempt
                self.r.hset(key, "state", "half-open")
                return
            raise CircuitOpenError(
                f"Circuit breaker open for {self.name}. "
                f"Too many failures. Retry after {self.CIRCUIT_TIMEOUT}s."
            )

    def record_failure(self) -> None:
        """Record a failure; open circuit if threshold exceeded."""
        key = self._key()
        failures = self.r.hincrby(key, "failures", 1)
        self.r.expire(key, self.CIRCUIT_TIMEOUT * 2)
        if failures >= self.FAILURE_THRESHOLD:
            self.r.hset(key, mapping={"state": "open", "opened_at": str(time.time())})
            logger.warning("circuit_breaker_opened", collaborator=self.name, failures=failures)

    def record_success(self) -> None:
        """Reset circuit breaker on success."""
        self.r.delete(self._key())
