from __future__ import annotations

import time
import uuid
from typing import Callable

import redis

from compound_access.core.errors import RateLimited
from compound_access.core.logging import get_logger, get_ops_logger

logger = get_logger(__name__)
ops_logger = get_ops_logger()


class SlidingWindowRateLimiter:
    """Distributed sliding window limiter keyed per caller, backed by a Redis sorted set.

    One instance per protected surface (e.g. the scan endpoint); it is held on
    application state rather than at module level. All workers sharing the
    Redis instance share the budget. When Redis is unreachable requests are
    allowed and the failure is reported on the ops logger.
    """

    def __init__(
        self,
        client: redis.Redis,
        surface: str,
        window_seconds: int,
        max_requests: int,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.surface = surface
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock

    @classmethod
    def from_url(cls, redis_url: str, surface: str, window_seconds: int, max_requests: int) -> "SlidingWindowRateLimiter":
        return cls(redis.Redis.from_url(redis_url), surface, window_seconds, max_requests)

    def _make_key(self, caller_id: str) -> str:
        return f"rate_limit:{caller_id}:{self.surface}"

    def hit(self, caller_id: str) -> bool:
        """Record a request; False when the caller is over the limit."""
        key = self._make_key(caller_id)
        now = self._clock()
        member = f"{now:.6f}:{uuid.uuid4().hex}"

        try:
            with self.client.pipeline() as pipe:
                pipe.zremrangebyscore(key, 0, now - self.window_seconds)
                pipe.zadd(key, {member: now})
                pipe.zcard(key)
                pipe.expire(key, self.window_seconds)
                _, _, count, _ = pipe.execute()

            if count > self.max_requests:
                # Rejected requests do not consume budget.
                self.client.zrem(key, member)
                return False
            return True
        except redis.RedisError as e:
            ops_logger.error("rate_limit_store_unavailable", surface=self.surface, caller_id=caller_id, error=str(e))
            return True

    def check(self, caller_id: str) -> None:
        if not self.hit(caller_id):
            logger.warning("rate_limit_exceeded", surface=self.surface, caller_id=caller_id, limit=self.max_requests, window_seconds=self.window_seconds)
            raise RateLimited(details={"retry_after": self.retry_after(caller_id)})

    def retry_after(self, caller_id: str) -> int:
        try:
            oldest: list[tuple[bytes, float]] = self.client.zrange(self._make_key(caller_id), 0, 0, withscores=True)
        except redis.RedisError:
            return self.window_seconds
        if not oldest:
            return 0
        remaining = oldest[0][1] + self.window_seconds - self._clock()
        return max(0, int(remaining) + 1)

    def reset(self, caller_id: str) -> None:
        try:
            self.client.delete(self._make_key(caller_id))
        except redis.RedisError as e:
            ops_logger.error("rate_limit_reset_failed", surface=self.surface, caller_id=caller_id, error=str(e))
