import ipaddress
import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import redis
from fastapi import Depends, Request

from trulybot.config import RATE_LIMIT_BACKEND, redis_url
from trulybot.dependencies import get_current_user_id, get_rate_limiter
from trulybot.errors import ConfigurationError, RateLimitExceeded
from trulybot.metrics import increment_rate_limit

logger = logging.getLogger("trulybot.rate_limit")

IP_HEADERS = (
    "x-real-ip",
    "x-forwarded-for",
    "x-client-ip",
    "x-cluster-client-ip",
    "cf-connecting-ip",
    "fastly-client-ip",
    "true-client-ip",
    "x-azure-clientip",
)
USER_AGENT_LENGTH = 50


@dataclass(frozen=True)
class RateLimitPolicy:
    window_seconds: int
    max_requests: int


DEFAULT_POLICIES = {
    "auth": RateLimitPolicy(window_seconds=15 * 60, max_requests=5),
    "payment": RateLimitPolicy(window_seconds=60, max_requests=3),
    "chat": RateLimitPolicy(window_seconds=60, max_requests=30),
    "api": RateLimitPolicy(window_seconds=60, max_requests=100),
    "trial": RateLimitPolicy(window_seconds=10 * 60, max_requests=3),
}


@dataclass
class RateLimitResult:
    allowed: bool
    count: int
    limit: int
    remaining: int
    reset_time: int

    def retry_after(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(1, int(self.reset_time - now))

    def headers(self) -> dict:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_time),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after())
        return headers


class CounterStore:
    def incr(self, key: str, ttl_seconds: int) -> int:
        """Atomically increment `key` and return the new count."""
        raise NotImplementedError


class MemoryCounterStore(CounterStore):
    """Process-local counters. Only correct for a single worker."""

    def __init__(self, sweep_interval: float = 60.0, clock=time.monotonic):
        self._counters: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._last_sweep = clock()

    def incr(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self._sweep_interval:
                self._sweep(now)
            count, expires_at = self._counters.get(key, (0, 0.0))
            if expires_at <= now:
                count, expires_at = 0, now + ttl_seconds
            count += 1
            self._counters[key] = (count, expires_at)
            return count

    def _sweep(self, now: float):
        expired = [k for k, (_, exp) in self._counters.items() if exp <= now]
        for k in expired:
            del self._counters[k]
        self._last_sweep = now

    def __len__(self):
        return len(self._counters)


class RedisCounterStore(CounterStore):
    def __init__(self, client):
        self.client = client

    def incr(self, key: str, ttl_seconds: int) -> int:
        pipe = self.client.pipeline(transaction=True)
        pipe.incr(key)
        # the window index is part of the key, so refreshing the TTL on each hit is harmless
        pipe.expire(key, ttl_seconds)
        count, _ = pipe.execute()
        return int(count)


class RateLimiter:
    def __init__(self, store: CounterStore, policies: Optional[Dict[str, RateLimitPolicy]] = None):
        self.store = store
        self.policies = dict(policies or DEFAULT_POLICIES)

    def check(self, client_key: str, endpoint_class: str, now: Optional[float] = None) -> RateLimitResult:
        """Count this request in the current fixed window.

        Windows are aligned to wall-clock multiples of the window length.
        A store failure lets the request through.
        """
        policy = self.policies[endpoint_class]
        now = time.time() if now is None else now
        window_index = int(now // policy.window_seconds)
        reset_time = (window_index + 1) * policy.window_seconds
        key = f"rl:{endpoint_class}:{client_key}:{window_index}"
        try:
            count = self.store.incr(key, policy.window_seconds)
        except redis.RedisError as e:
            logger.warning(f"Rate limit store unavailable, allowing request: {e.__class__.__name__}")
            return RateLimitResult(True, 0, policy.max_requests, policy.max_requests, reset_time)

        allowed = count <= policy.max_requests
        increment_rate_limit(endpoint_class, allowed)
        return RateLimitResult(
            allowed=allowed,
            count=count,
            limit=policy.max_requests,
            remaining=max(0, policy.max_requests - count),
            reset_time=reset_time,
        )


def _valid_ip(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    candidate = value.split(",")[0].strip()
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def client_ip(request: Request) -> str:
    for header in IP_HEADERS:
        ip = _valid_ip(request.headers.get(header))
        if ip:
            return ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def client_identity(request: Request, user_id: Optional[str] = None) -> str:
    """User id when known, else best client IP plus a truncated user agent."""
    if user_id:
        return f"user:{user_id}"
    user_agent = (request.headers.get("user-agent") or "unknown")[:USER_AGENT_LENGTH]
    return f"ip:{client_ip(request)}:{user_agent}"


def build_rate_limiter() -> RateLimiter:
    if RATE_LIMIT_BACKEND == "redis":
        client = redis.from_url(redis_url(), socket_timeout=2, socket_connect_timeout=2)
        logger.info("Rate limiting backed by Redis")
        return RateLimiter(RedisCounterStore(client))
    if RATE_LIMIT_BACKEND != "memory":
        raise ConfigurationError(f"Unknown RATE_LIMIT_BACKEND {RATE_LIMIT_BACKEND!r}")
    logger.info("Rate limiting backed by process memory")
    return RateLimiter(MemoryCounterStore())


def rate_limit(endpoint_class: str):
    """Dependency counting the request against `endpoint_class`."""
    def dependency(
        request: Request,
        user_id: Optional[str] = Depends(get_current_user_id),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> RateLimitResult:
        result = limiter.check(client_identity(request, user_id), endpoint_class)
        request.state.rate_limit = result
        if not result.allowed:
            raise RateLimitExceeded(headers={"Retry-After": str(result.retry_after())})
        return result
    return dependency
