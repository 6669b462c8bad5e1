import logging
import math
import re
from dataclasses import dataclass

from accesslog.core.cache import CacheClient
from accesslog.core.errors import CacheUnavailable, ValidationFailed
from accesslog.models.application import Application, ApplicationSnapshot
from accesslog.repositories.application_repository import ApplicationRepository

logger = logging.getLogger("accesslog.applications")

NAME_MAX_LEN = 255
DOMAIN_MAX_LEN = 253
DOMAIN_RE = re.compile(r"^[A-Za-z0-9_-]+(\.[A-Za-z0-9_-]+)+$")

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


@dataclass
class ApplicationPage:
    applications: list[ApplicationSnapshot]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


def by_id_key(app_id: str) -> str:
    return f"app:by_id:{app_id}"


def by_api_key_key(api_key: str) -> str:
    return f"app:by_api_key:{api_key}"


def validate_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationFailed("name is required", details={"field": "name"})
    if len(name) > NAME_MAX_LEN:
        raise ValidationFailed(f"name must be at most {NAME_MAX_LEN} characters", details={"field": "name"})
    return name


def validate_domain(domain: str | None) -> str:
    domain = (domain or "").strip().lower().rstrip(".")
    if not domain:
        raise ValidationFailed("domain is required", details={"field": "domain"})
    if len(domain) > DOMAIN_MAX_LEN or not DOMAIN_RE.match(domain):
        raise ValidationFailed("domain is not a valid host name", details={"field": "domain"})
    return domain


class ApplicationService:
    """
    Tenant lifecycle with a read-through cache.

    Lookups by id and by API key are cached for `cache_ttl` seconds. Every
    write invalidates app:by_id:<id> and then app:by_api_key:<old key>
    once the store has committed. The cache is best effort: its failures are
    logged and behave like misses.
    """

    def __init__(self, repo: ApplicationRepository, cache: CacheClient, cache_ttl: int = 300):
        self.repo = repo
        self.cache = cache
        self.cache_ttl = cache_ttl

    async def create(self, name: str, domain: str, description: str | None = None) -> ApplicationSnapshot:
        app = Application(
            name=validate_name(name),
            domain=validate_domain(domain),
            description=(description or "").strip(),
            active=True,
        )
        app = await self.repo.create(app)
        logger.info("application_created", extra={"app_id": app.app_id})
        snapshot = ApplicationSnapshot.model_validate(app)
        await self._cache_put(snapshot)
        return snapshot

    async def get_by_id(self, app_id: str) -> ApplicationSnapshot:
        cached = await self._cache_get(by_id_key(app_id))
        if cached is not None:
            return cached
        snapshot = ApplicationSnapshot.model_validate(await self.repo.get_by_id(app_id))
        await self._cache_put(snapshot)
        return snapshot

    async def get_by_api_key(self, api_key: str) -> ApplicationSnapshot:
        cached = await self.get_cached_by_api_key(api_key)
        if cached is not None:
            return cached
        snapshot = ApplicationSnapshot.model_validate(await self.repo.get_by_api_key(api_key))
        await self._cache_put(snapshot)
        return snapshot

    async def get_cached_by_api_key(self, api_key: str) -> ApplicationSnapshot | None:
        """Cache-only lookup; never touches the store."""
        return await self._cache_get(by_api_key_key(api_key))

    async def update(self, app_id: str, changes: dict) -> ApplicationSnapshot:
        values = {}
        if changes.get("name") is not None:
            values["name"] = validate_name(changes["name"])
        if changes.get("domain") is not None:
            values["domain"] = validate_domain(changes["domain"])
        if changes.get("description") is not None:
            values["description"] = changes["description"].strip()
        if changes.get("active") is not None:
            values["active"] = bool(changes["active"])

        # old key is needed for invalidation
        current = await self.repo.get_by_id(app_id)
        old_key = current.api_key

        app = await self.repo.update(app_id, values)
        await self._invalidate(app_id, old_key)
        logger.info("application_updated", extra={"app_id": app_id, "fields": sorted(values)})
        return ApplicationSnapshot.model_validate(app)

    async def delete(self, app_id: str) -> None:
        current = await self.repo.get_by_id(app_id)
        old_key = current.api_key
        await self.repo.delete(app_id)
        await self._invalidate(app_id, old_key)
        logger.info("application_deleted", extra={"app_id": app_id})

    async def regenerate_api_key(self, app_id: str) -> str:
        current = await self.repo.get_by_id(app_id)
        old_key = current.api_key
        new_key = await self.repo.regenerate_api_key(app_id)
        await self._invalidate(app_id, old_key)
        logger.info("api_key_regenerated", extra={"app_id": app_id})
        return new_key

    async def list(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> ApplicationPage:
        """One page of applications; out-of-range page and limit are clamped, not rejected."""
        page = max(1, page)
        limit = min(MAX_PAGE_SIZE, max(1, limit))
        apps = await self.repo.list(limit=limit, offset=(page - 1) * limit)
        total = await self.repo.count()
        return ApplicationPage([ApplicationSnapshot.model_validate(a) for a in apps], total, page, limit)

    async def _cache_get(self, key: str) -> ApplicationSnapshot | None:
        try:
            raw = await self.cache.get(key)
        except CacheUnavailable as exc:
            logger.warning("application_cache_read_failed", extra={"error": exc.message})
            return None
        if raw is None:
            return None
        try:
            return ApplicationSnapshot.model_validate_json(raw)
        except ValueError:
            return None

    async def _cache_put(self, snapshot: ApplicationSnapshot) -> None:
        raw = snapshot.model_dump_json()
        try:
            await self.cache.pipeline(
                [
                    ("set", (by_id_key(snapshot.app_id), raw, self.cache_ttl)),
                    ("set", (by_api_key_key(snapshot.api_key), raw, self.cache_ttl)),
                ]
            )
        except CacheUnavailable as exc:
            logger.warning("application_cache_write_failed", extra={"error": exc.message})

    async def _invalidate(self, app_id: str, old_key: str) -> None:
        try:
            await self.cache.delete(by_id_key(app_id))
            await self.cache.delete(by_api_key_key(old_key))
        except CacheUnavailable as exc:
            logger.warning("application_cache_invalidate_failed", extra={"app_id": app_id, "error": exc.message})
