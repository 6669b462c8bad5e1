import logging
import time
from dataclasses import dataclass

from accesslog.config import RateLimitSection
from accesslog.core.cache import CacheClient
from accesslog.core.errors import CacheUnavailable

logger = logging.getLogger("accesslog.rate_limit")

ANONYMOUS = "anonymous"
MINUTE = 60
HOUR = 3600


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_epoch: int
    window: str = "minute"

    @property
    def retry_after(self) -> int:
        return max(1, self.reset_epoch - int(time.time()))

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_epoch),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


def rate_limit_key(tenant: str, client_ip: str, window: str) -> str:
    return f"rate_limit:{tenant or ANONYMOUS}:{client_ip}:{window}"


def _window_reset(now: int, seconds: int) -> int:
    # every admitted request re-arms the TTL, so the bucket lives at most one window from now
    return now + seconds


class RateLimiter:
    """
    Fixed-window counters per (tenant, client ip) for a minute and an hour.

    The read and the increment are separate round trips, so concurrent
    requests from one origin can over-admit by their parallelism. A cache
    outage admits the request.
    """

    def __init__(self, cache: CacheClient, config: RateLimitSection):
        self.cache = cache
        self.config = config

    async def check(self, tenant: str | None, client_ip: str) -> RateLimitResult:
        now = int(time.time())
        tenant = tenant or ANONYMOUS
        minute_key = rate_limit_key(tenant, client_ip, "minute")
        hour_key = rate_limit_key(tenant, client_ip, "hour")
        per_minute = self.config.requests_per_minute
        per_hour = self.config.requests_per_hour

        try:
            minute_raw, hour_raw = await self.cache.mget([minute_key, hour_key])
            minute_count = int(minute_raw or 0)
            hour_count = int(hour_raw or 0)

            if minute_count >= per_minute:
                return RateLimitResult(False, per_minute, 0, _window_reset(now, MINUTE), "minute")
            if hour_count >= per_hour:
                return RateLimitResult(False, per_hour, 0, _window_reset(now, HOUR), "hour")

            minute_count, _, hour_count, _ = await self.cache.pipeline(
                [
                    ("incr", (minute_key,)),
                    ("expire", (minute_key, MINUTE)),
                    ("incr", (hour_key,)),
                    ("expire", (hour_key, HOUR)),
                ]
            )
        except CacheUnavailable as exc:
            logger.warning(
                "rate_limit_fail_open",
                extra={"tenant": tenant, "client_ip": client_ip, "error": exc.message},
            )
            return RateLimitResult(True, per_minute, per_minute, _window_reset(now, MINUTE))

        return RateLimitResult(
            allowed=True,
            limit=per_minute,
            remaining=max(0, per_minute - int(minute_count)),
            reset_epoch=_window_reset(now, MINUTE),
        )
