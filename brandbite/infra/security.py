import asyncio
import logging
import time
from collections import defaultdict, deque
from ipaddress import ip_address, ip_network
from typing import Deque, Dict, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError, ResponseError

from starlette.requests import Request


logger = logging.getLogger("brandbite.rate_limit")


class RateLimiter(Protocol):
    async def allow(self, key: str) -> bool: ...

    async def reset(self) -> None: ...

    async def close(self) -> None: ...


class InMemoryRateLimiter:
    def __init__(
        self,
        requests_per_minute: int,
        cleanup_minutes: int = 10,
        *,
        window_seconds: int = 60,
    ) -> None:
        self.requests_per_minute = requests_per_minute
        self.cleanup_minutes = cleanup_minutes
        self.window_seconds = max(1, int(window_seconds))
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._last_seen: Dict[str, float] = {}
        self._last_prune: float = 0.0
        self._lock = asyncio.Lock()

    async def allow(self, key: str) -> bool:
        async with self._lock:
            now = time.time()
            self._maybe_prune(now)
            window_start = now - self.window_seconds
            timestamps = self._requests[key]
            while timestamps and timestamps[0] < window_start:
                timestamps.popleft()
            self._last_seen[key] = now
            if len(timestamps) >= self.requests_per_minute:
                return False
            timestamps.append(now)
            return True

    async def reset(self) -> None:
        self._requests.clear()
        self._last_seen.clear()
        self._last_prune = 0.0

    async def close(self) -> None:
        return None

    def _maybe_prune(self, now: float) -> None:
        if now - self._last_prune < 60:
            return
        expire_before = now - (self.cleanup_minutes * 60)
        for key in list(self._requests.keys()):
            if not self._requests[key] or self._last_seen.get(key, 0.0) < expire_before:
                self._requests.pop(key, None)
                self._last_seen.pop(key, None)
        self._last_prune = now


# Sliding window kept in a sorted set; the sequence key makes members unique
# when several requests land in the same millisecond.
RATE_LIMIT_LUA = r'''
local limit = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local ttl_seconds = tonumber(ARGV[3])

local time = redis.call('TIME')
local now_ms = (time[1] * 1000) + math.floor(time[2] / 1000)

redis.call('ZREMRANGEBYSCORE', KEYS[1], 0, now_ms - window_ms)
if redis.call('ZCARD', KEYS[1]) >= limit then
  return 0
end

local seq = redis.call('INCR', KEYS[2])
redis.call('ZADD', KEYS[1], now_ms, tostring(now_ms) .. ':' .. tostring(seq))
redis.call('EXPIRE', KEYS[1], ttl_seconds)
redis.call('EXPIRE', KEYS[2], ttl_seconds)
return 1
'''


class RedisRateLimiter:
    key_prefix = "brandbite:rate-limit"

    def __init__(
        self,
        redis_url: str,
        requests_per_minute: int,
        cleanup_minutes: int = 10,
        redis_client: redis.Redis | None = None,
        fail_open_seconds: int = 300,
        health_recheck_seconds: float = 5.0,
        *,
        window_seconds: int = 60,
    ) -> None:
        self.requests_per_minute = requests_per_minute
        self.redis = redis_client or redis.from_url(redis_url, encoding="utf-8", decode_responses=False)
        self.window_seconds = max(1, int(window_seconds))
        self.window_ms = self.window_seconds * 1000
        self.ttl_seconds = max(self.window_seconds + 2, int(cleanup_minutes * 60), 60)
        self.fail_open_seconds = max(1, fail_open_seconds)
        self.health_recheck_seconds = max(0.5, health_recheck_seconds)
        self._script_sha: str | None = None
        self._fallback = InMemoryRateLimiter(requests_per_minute, cleanup_minutes=cleanup_minutes)
        self._fail_open_until: float = 0.0
        self._last_recheck: float = 0.0
        self._fail_open_lock = asyncio.Lock()

    async def allow(self, key: str) -> bool:
        now = time.monotonic()
        if self._fail_open_until > now:
            return await self._allow_with_fallback(key, now)
        try:
            return bool(await self._eval_script(f"{self.key_prefix}:{key}", f"{self.key_prefix}:{key}:seq"))
        except RedisError:
            await self._enter_fail_open(now)
            logger.warning("rate_limit_redis_unavailable")
            return await self._allow_with_fallback(key, now)

    async def reset(self) -> None:
        try:
            cursor = 0
            while True:
                cursor, keys = await self.redis.scan(cursor=cursor, match=f"{self.key_prefix}:*", count=100)
                if keys:
                    await self.redis.delete(*keys)
                if cursor == 0:
                    break
        except RedisError:
            logger.warning("rate_limit_redis_reset_failed")

    async def close(self) -> None:
        try:
            await self.redis.aclose()
        except RedisError:
            logger.warning("rate_limit_redis_close_failed")

    async def _enter_fail_open(self, now: float) -> None:
        async with self._fail_open_lock:
            if now < self._fail_open_until:
                return
            self._fail_open_until = now + self.fail_open_seconds
            self._last_recheck = now
            await self._fallback.reset()

    async def _allow_with_fallback(self, key: str, now: float) -> bool:
        if now - self._last_recheck >= self.health_recheck_seconds:
            self._last_recheck = now
            try:
                await self.redis.ping()
            except RedisError:
                logger.debug("rate_limit_redis_still_unavailable")
            else:
                async with self._fail_open_lock:
                    self._fail_open_until = 0.0
                    await self._fallback.reset()
                logger.info("rate_limit_redis_recovered")
                return await self.allow(key)
        return await self._fallback.allow(key)

    async def _eval_script(self, set_key: str, seq_key: str) -> int:
        args = (set_key, seq_key, self.requests_per_minute, self.window_ms, self.ttl_seconds)
        if not self._script_sha:
            self._script_sha = await self.redis.script_load(RATE_LIMIT_LUA)
        try:
            return await self.redis.evalsha(self._script_sha, 2, *args)
        except ResponseError as exc:
            if "NOSCRIPT" not in str(exc):
                raise
        self._script_sha = None
        return await self.redis.eval(RATE_LIMIT_LUA, 2, *args)


def create_rate_limiter(
    app_settings,
    requests_per_minute: int | None = None,
    *,
    window_seconds: int = 60,
) -> RateLimiter:
    limit = requests_per_minute or app_settings.rate_limit_per_minute
    if getattr(app_settings, "redis_url", None):
        return RedisRateLimiter(
            app_settings.redis_url,
            limit,
            cleanup_minutes=app_settings.rate_limit_cleanup_minutes,
            fail_open_seconds=app_settings.rate_limit_fail_open_seconds,
            health_recheck_seconds=app_settings.rate_limit_redis_recheck_seconds,
            window_seconds=window_seconds,
        )
    return InMemoryRateLimiter(
        limit,
        cleanup_minutes=app_settings.rate_limit_cleanup_minutes,
        window_seconds=window_seconds,
    )


_MAX_HEADER_LEN = 2048
_MAX_FORWARDED_HOPS = 20


def resolve_client_key(
    request: Request,
    trust_proxy_headers: bool,
    trusted_proxy_ips: list[str],
    trusted_proxy_cidrs: list[str],
) -> str:
    """Return the address used as the rate limit key.

    ``X-Forwarded-For`` is honoured only when proxy headers are trusted and the
    direct peer is one of the configured proxies.
    """
    source_ip = request.client.host if request.client else "unknown"
    if not trust_proxy_headers:
        return source_ip
    networks: list[str] = list(trusted_proxy_cidrs)
    for ip_str in trusted_proxy_ips:
        try:
            ip_obj = ip_address(ip_str)
        except ValueError:
            continue
        networks.append(f"{ip_str}/{32 if ip_obj.version == 4 else 128}")
    if not networks or not _is_in_networks(source_ip, networks):
        return source_ip
    forwarded_for = request.headers.get("x-forwarded-for")
    if not forwarded_for or len(forwarded_for) > _MAX_HEADER_LEN:
        return source_ip
    hops = [hop.strip() for hop in forwarded_for.split(",")]
    if not hops or len(hops) > _MAX_FORWARDED_HOPS:
        return source_ip
    try:
        ip_address(hops[0])
    except ValueError:
        return source_ip
    return hops[0]


def _is_in_networks(client_host: str, networks: list[str]) -> bool:
    try:
        client_ip = ip_address(client_host)
    except ValueError:
        return False
    for network in networks:
        try:
            if client_ip in ip_network(network, strict=False):
                return True
        except ValueError:
            continue
    return False
