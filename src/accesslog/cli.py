import asyncio
import logging
import signal
import sys

import uvicorn
import yaml
from pydantic import ValidationError

from accesslog.config import Settings, load_settings
from accesslog.logging import setup_logging
from accesslog.main import create_app
from accesslog.worker import run_worker

logger = logging.getLogger("accesslog.cli")


def _load() -> Settings | None:
    try:
        return load_settings()
    except (OSError, ValidationError, yaml.YAMLError) as exc:
        print(f"failed to load configuration: {exc}", file=sys.stderr)
        return None


def _configure_logging(settings: Settings) -> None:
    setup_logging(settings.logging.level, settings.logging.format, settings.logging.output)


def server() -> int:
    settings = _load()
    if settings is None:
        return 1
    _configure_logging(settings)

    app = create_app(settings)
    config = uvicorn.Config(
        app,
        host=settings.app.host,
        port=settings.app.port,
        log_config=None,
        access_log=False,
    )
    srv = uvicorn.Server(config)
    try:
        srv.run()
    except OSError as exc:
        logger.error("bind_failed", extra={"host": settings.app.host, "port": settings.app.port, "error": str(exc)})
        return 1
    except SystemExit as exc:
        # uvicorn exits this way when the socket cannot be bound
        logger.error("server_exited", extra={"code": exc.code})
        return 1 if exc.code else 0
    # lifespan startup failures end the serve loop without raising
    if not srv.started:
        logger.error("server_start_failed", extra={"host": settings.app.host, "port": settings.app.port})
        return 1
    return 0


def worker() -> int:
    settings = _load()
    if settings is None:
        return 1
    _configure_logging(settings)

    async def main() -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        await run_worker(settings, stop)

    asyncio.run(main())
    return 0


def server_main() -> None:
    sys.exit(server())


def worker_main() -> None:
    sys.exit(worker())
