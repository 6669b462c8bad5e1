from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from accesslog.config import DatabaseSection

engine: AsyncEngine | None = None
SessionLocal: async_sessionmaker[AsyncSession] | None = None


def build_engine(config: DatabaseSection) -> AsyncEngine:
    kwargs: dict = {"echo": config.echo, "pool_pre_ping": True}
    dsn = config.dsn
    if dsn.startswith("postgresql"):
        kwargs.update(
            pool_size=max(1, config.max_idle_conns),
            max_overflow=max(0, config.max_open_conns - config.max_idle_conns),
            pool_recycle=config.conn_max_lifetime,
        )
        connect_args: dict = {"server_settings": {"timezone": "UTC"}}
        if config.ssl_mode and config.ssl_mode != "disable":
            connect_args["ssl"] = config.ssl_mode
        kwargs["connect_args"] = connect_args
    return create_async_engine(dsn, **kwargs)


def init_db(config: DatabaseSection) -> AsyncEngine:
    global engine, SessionLocal
    if engine is None:
        engine = build_engine(config)
        SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    return engine


async def close_db() -> None:
    global engine, SessionLocal
    if engine is not None:
        await engine.dispose()
        engine = None
        SessionLocal = None


async def get_db() -> AsyncIterator[AsyncSession]:
    if SessionLocal is None:
        raise RuntimeError("database is not initialised; call init_db() first")
    async with SessionLocal() as session:
        yield session
