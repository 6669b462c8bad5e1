from redis.asyncio import Redis

from accesslog.config import RedisSection

redis_client: Redis | None = None
_config: RedisSection | None = None


def init_redis(config: RedisSection) -> None:
    global _config
    _config = config


async def get_redis() -> Redis:
    # Lazy singleton, created on first use
    global redis_client
    if redis_client is None:
        config = _config or RedisSection()
        redis_client = Redis.from_url(
            config.dsn,
            decode_responses=True,
            max_connections=config.pool_size,
        )
    return redis_client


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
