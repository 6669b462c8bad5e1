import asyncio
import functools
import logging

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from accesslog.core.errors import AccessLogError, Duplicate, RequestTimeout, StoreUnavailable

logger = logging.getLogger("accesslog.repositories")


def store_operation(fn):
    """
    Run a repository coroutine under the store deadline and map driver
    failures onto the error kinds callers understand.
    """

    @functools.wraps(fn)
    async def wrapper(self: "Repository", *args, **kwargs):
        try:
            async with asyncio.timeout(self.op_timeout):
                return await fn(self, *args, **kwargs)
        except AccessLogError:
            raise
        except IntegrityError as exc:
            await self.session.rollback()
            raise Duplicate(f"{fn.__name__}: unique constraint violated") from exc
        except TimeoutError as exc:
            await _safe_rollback(self.session)
            raise RequestTimeout(f"{fn.__name__} exceeded {self.op_timeout}s") from exc
        except (OperationalError, InterfaceError, DBAPIError, OSError) as exc:
            await _safe_rollback(self.session)
            logger.error("store_error", extra={"operation": fn.__qualname__, "error": str(exc)})
            raise StoreUnavailable() from exc

    return wrapper


async def _safe_rollback(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except (DBAPIError, OSError) as exc:
        logger.warning("rollback_failed", extra={"error": str(exc)})


class Repository:
    def __init__(self, session: AsyncSession, op_timeout: float | None = None):
        self.session = session
        self.op_timeout = op_timeout

    @property
    def dialect(self) -> str:
        return self.session.get_bind().dialect.name
