import functools
import json
from typing import Any, Iterable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from accesslog.core.errors import CacheUnavailable


def _translate(fn):
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except RedisError as exc:
            raise CacheUnavailable(f"cache {fn.__name__} failed: {exc}") from exc

    return wrapper


class CacheClient:
    """
    Typed operations over a redis.asyncio client.

    Every Redis failure surfaces as CacheUnavailable so callers can treat it
    as a miss (or fail open) without knowing about redis exceptions.
    The client must be created with decode_responses=True.
    """

    def __init__(self, redis: Redis):
        self.redis = redis

    # strings

    @_translate
    async def get(self, key: str) -> str | None:
        return await self.redis.get(key)

    @_translate
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        await self.redis.set(key, value, ex=ttl if ttl and ttl > 0 else None)

    @_translate
    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self.redis.delete(*keys)

    @_translate
    async def exists(self, key: str) -> bool:
        return bool(await self.redis.exists(key))

    # json

    async def set_json(self, key: str, value: Any, ttl: int | None = None) -> None:
        await self.set(key, json.dumps(value, default=str), ttl)

    async def get_json(self, key: str) -> Any:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            # unreadable entry is a miss
            return None

    # counters

    @_translate
    async def incr(self, key: str) -> int:
        return await self.redis.incr(key)

    @_translate
    async def decr(self, key: str) -> int:
        return await self.redis.decr(key)

    @_translate
    async def incr_by(self, key: str, amount: int) -> int:
        return await self.redis.incrby(key, amount)

    @_translate
    async def decr_by(self, key: str, amount: int) -> int:
        return await self.redis.decrby(key, amount)

    # ttl

    @_translate
    async def expire(self, key: str, seconds: int) -> bool:
        return bool(await self.redis.expire(key, seconds))

    @_translate
    async def ttl(self, key: str) -> int:
        return await self.redis.ttl(key)

    # hashes

    @_translate
    async def hset(self, key: str, field: str, value: Any) -> int:
        return await self.redis.hset(key, field, value)

    @_translate
    async def hget(self, key: str, field: str) -> str | None:
        return await self.redis.hget(key, field)

    @_translate
    async def hgetall(self, key: str) -> dict[str, str]:
        return await self.redis.hgetall(key)

    @_translate
    async def hdel(self, key: str, *fields: str) -> int:
        return await self.redis.hdel(key, *fields)

    # batch

    @_translate
    async def mget(self, keys: list[str]) -> list[str | None]:
        if not keys:
            return []
        return await self.redis.mget(keys)

    async def mdelete(self, keys: list[str]) -> int:
        return await self.delete(*keys)

    @_translate
    async def pipeline(self, commands: Iterable[tuple[str, tuple]]) -> list[Any]:
        """
        Run (command, args) pairs in one MULTI/EXEC batch.

        Results come back in command order.
        """
        pipe = self.redis.pipeline(transaction=True)
        for name, args in commands:
            getattr(pipe, name)(*args)
        return await pipe.execute()

    @_translate
    async def ping(self) -> bool:
        return bool(await self.redis.ping())
