import logging
from datetime import datetime, timedelta, timezone

import pytest

from accesslog.core.errors import (
    ApplicationInactive,
    Duplicate,
    Forbidden,
    NotFound,
    StoreUnavailable,
    ValidationFailed,
)
from accesslog.repositories.application_repository import ApplicationRepository
from accesslog.repositories.tracking_repository import TrackingRepository
from accesslog.services.application_service import (
    ApplicationService,
    by_api_key_key,
    by_id_key,
    validate_domain,
)
from accesslog.services.statistics_service import (
    MAX_BUCKETS,
    StatisticsService,
    bucket_count,
    custom_stats_cache_key,
    fill_buckets,
    parse_date_param,
    stats_cache_key,
)
from accesslog.services.tracking_service import EventInput, TrackingService

from conftest import UA_CHROME

pytestmark = pytest.mark.asyncio


@pytest.fixture
def applications(session, cache) -> ApplicationService:
    return ApplicationService(ApplicationRepository(session), cache, cache_ttl=300)


@pytest.fixture
def tracking(session, applications) -> TrackingService:
    return TrackingService(TrackingRepository(session), applications)


@pytest.mark.parametrize("domain", ["example.com", "Sub.Example.COM", "a-b.c_d.io"])
def test_valid_domains(domain):
    assert validate_domain(domain) == domain.lower()


@pytest.mark.parametrize("domain", ["", "localhost", "has space.com", "a" * 250 + ".com", "bad/.com"])
def test_invalid_domains(domain):
    with pytest.raises(ValidationFailed):
        validate_domain(domain)


async def test_create_validates_name(applications):
    with pytest.raises(ValidationFailed):
        await applications.create("   ", "demo.example.com")
    with pytest.raises(ValidationFailed):
        await applications.create("x" * 256, "demo.example.com")

    app = await applications.create("  Demo  ", "Demo.Example.com", "desc")
    assert app.name == "Demo"
    assert app.domain == "demo.example.com"
    assert app.active is True


async def test_api_key_lookup_populates_cache(applications, cache):
    app = await applications.create("Demo", "demo.example.com")
    assert await cache.get(by_api_key_key(app.api_key)) is not None
    await cache.delete(by_api_key_key(app.api_key), by_id_key(app.app_id))

    found = await applications.get_by_api_key(app.api_key)
    assert found.app_id == app.app_id
    assert await cache.get(by_api_key_key(app.api_key)) is not None
    assert await cache.get(by_id_key(app.app_id)) is not None
    assert 0 < await cache.ttl(by_api_key_key(app.api_key)) <= 300

    cached = await applications.get_cached_by_api_key(app.api_key)
    assert cached == found


async def test_writes_invalidate_both_cache_entries(applications, cache):
    app = await applications.create("Demo", "demo.example.com")
    await applications.get_by_api_key(app.api_key)

    updated = await applications.update(app.app_id, {"active": False})
    assert updated.active is False
    assert await cache.get(by_id_key(app.app_id)) is None
    assert await cache.get(by_api_key_key(app.api_key)) is None
    assert (await applications.get_by_api_key(app.api_key)).active is False


async def test_regenerate_invalidates_old_key(applications, cache):
    app = await applications.create("Demo", "demo.example.com")
    await applications.get_by_api_key(app.api_key)

    new_key = await applications.regenerate_api_key(app.app_id)
    assert new_key != app.api_key
    assert await cache.get(by_api_key_key(app.api_key)) is None
    with pytest.raises(NotFound):
        await applications.get_by_api_key(app.api_key)
    assert (await applications.get_by_api_key(new_key)).app_id == app.app_id


async def test_delete_then_lookups_fail(applications):
    app = await applications.create("Demo", "demo.example.com")
    await applications.get_by_id(app.app_id)
    await applications.delete(app.app_id)
    with pytest.raises(NotFound):
        await applications.get_by_id(app.app_id)
    with pytest.raises(NotFound):
        await applications.get_by_api_key(app.api_key)
    with pytest.raises(NotFound):
        await applications.delete(app.app_id)


async def test_cache_outage_degrades_to_store(session, broken_cache, caplog):
    service = ApplicationService(ApplicationRepository(session), broken_cache)
    with caplog.at_level(logging.WARNING, logger="accesslog.applications"):
        app = await service.create("Demo", "demo.example.com")
        assert (await service.get_by_api_key(app.api_key)).app_id == app.app_id
        await service.regenerate_api_key(app.app_id)
    assert any(r.getMessage() == "application_cache_read_failed" for r in caplog.records)


async def test_list_clamps_limit(applications):
    for i in range(3):
        await applications.create(f"App {i}", f"a{i}.example.com")
    result = await applications.list(page=0, limit=0)
    assert (result.page, result.limit, result.total, result.total_pages) == (1, 1, 3, 3)
    assert len(result.applications) == 1

    result = await applications.list(page=2, limit=5000)
    assert (result.page, result.limit, result.total_pages) == (2, 100, 1)
    assert result.applications == []

    result = await applications.list(page=2, limit=2)
    assert len(result.applications) == 1
    assert result.total_pages == 2


async def test_track_cross_checks_tenant(applications, tracking):
    app = await applications.create("Demo", "demo.example.com")
    other = await applications.create("Other", "other.example.com")

    with pytest.raises(Forbidden):
        await tracking.track(EventInput(app_id=other.app_id, user_agent="UA"), app, "1.2.3.4")
    with pytest.raises(ValidationFailed):
        await tracking.track(EventInput(app_id="", user_agent="UA"), app, "1.2.3.4")
    with pytest.raises(ValidationFailed):
        await tracking.track(
            EventInput(app_id=app.app_id, user_agent="UA", custom_params={"x": "y" * 70000}),
            app,
            "1.2.3.4",
        )

    inactive = await applications.update(app.app_id, {"active": False})
    with pytest.raises(ApplicationInactive):
        await tracking.track(EventInput(app_id=app.app_id, user_agent="UA"), inactive, "1.2.3.4")


async def test_track_assigns_server_fields_and_enriches(applications, tracking):
    app = await applications.create("Demo", "demo.example.com")
    before = datetime.now(timezone.utc)

    event = await tracking.track(
        EventInput(app_id=app.app_id, user_agent=UA_CHROME, url="/p", session_id="s1", custom_params={"k": "v"}),
        app,
        "203.0.113.9",
    )
    assert event.id
    assert before <= event.timestamp <= datetime.now(timezone.utc)
    assert event.ip_address == "203.0.113.9"
    assert (event.device_type, event.browser, event.os) == ("desktop", "Chrome", "Windows")
    assert event.custom_parameters.to_dict() == {"k": "v"}

    explicit = await tracking.track(
        EventInput(app_id=app.app_id, user_agent="UA", ip_address="198.51.100.1"), app, "203.0.113.9"
    )
    assert explicit.ip_address == "198.51.100.1"
    assert explicit.session_id == ""


async def test_track_retries_once_on_duplicate_id(applications, tracking, monkeypatch):
    app = await applications.create("Demo", "demo.example.com")
    calls = []
    original = tracking.repo.create

    async def flaky_create(event):
        calls.append(event.id)
        if len(calls) == 1:
            raise Duplicate()
        return await original(event)

    monkeypatch.setattr(tracking.repo, "create", flaky_create)
    event = await tracking.track(EventInput(app_id=app.app_id, user_agent="UA"), app, "1.1.1.1")
    assert len(calls) == 2
    assert calls[0] != calls[1]
    assert event.id == calls[1]


async def test_pixel_path_never_raises(applications, tracking, monkeypatch):
    app = await applications.create("Demo", "demo.example.com")

    assert await tracking.track_pixel(EventInput(app_id="unknown", user_agent="UA"), "1.1.1.1") is None
    stored = await tracking.track_pixel(EventInput(app_id=app.app_id, user_agent="UA", url="/"), "1.1.1.1")
    assert stored is not None and stored.app_id == app.app_id

    async def store_down(event):
        raise StoreUnavailable()

    monkeypatch.setattr(tracking.repo, "create", store_down)
    assert await tracking.track_pixel(EventInput(app_id=app.app_id, user_agent="UA"), "1.1.1.1") is None

    await applications.update(app.app_id, {"active": False})
    assert await tracking.track_pixel(EventInput(app_id=app.app_id, user_agent="UA"), "1.1.1.1") is None


async def test_purge_window_and_all(applications, tracking):
    app = await applications.create("Demo", "demo.example.com")
    for _ in range(3):
        await tracking.track(EventInput(app_id=app.app_id, user_agent="UA"), app, "1.1.1.1")

    past = datetime(2000, 1, 1, tzinfo=timezone.utc)
    assert await tracking.purge(app.app_id, past, past + timedelta(days=1)) == 0
    with pytest.raises(ValidationFailed):
        await tracking.purge(app.app_id, past + timedelta(days=1), past)
    assert await tracking.purge(app.app_id) == 3
    assert await tracking.count(app.app_id) == 0


def test_parse_date_param_forms():
    assert parse_date_param("2024-03-01", "start_date") == datetime(2024, 3, 1, tzinfo=timezone.utc)
    end = parse_date_param("2024-03-01", "end_date", end_of_day=True)
    assert (end.hour, end.minute, end.second, end.microsecond) == (23, 59, 59, 999999)
    assert parse_date_param("2024-03-01T10:00:00Z", "x") == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
    assert parse_date_param("2024-03-01T19:00:00+09:00", "x") == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
    for bad in ("", "yesterday", "2024-13-01"):
        with pytest.raises(ValidationFailed):
            parse_date_param(bad, "x")


def test_fill_buckets_reports_missing_as_zero():
    t0 = datetime(2024, 3, 1, tzinfo=timezone.utc)
    series = fill_buckets({t0 + timedelta(days=1): 5}, t0, t0 + timedelta(days=2, hours=3), "day")
    assert [p["count"] for p in series] == [0, 5, 0]
    assert series[0]["timestamp"] == t0.isoformat()


async def test_statistics_validation(session, cache):
    stats = StatisticsService(TrackingRepository(session), cache)
    t0 = datetime(2024, 3, 1, tzinfo=timezone.utc)
    with pytest.raises(ValidationFailed):
        await stats.get_statistics("app1", t0 + timedelta(days=1), t0)
    with pytest.raises(ValidationFailed):
        await stats.get_statistics("app1", t0, t0, group_by="week")
    with pytest.raises(ValidationFailed):
        await stats.get_statistics("app1", t0, t0, limit=0)


async def test_statistics_empty_tenant_is_all_zero(session, cache):
    stats = StatisticsService(TrackingRepository(session), cache)
    t = datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
    result = await stats.get_statistics("nobody", t, t)
    assert result["total_requests"] == 0
    assert result["unique_visitors"] == 0
    assert result["unique_sessions"] == 0
    assert result["average_session_duration"] == 0
    for key in ("top_pages", "top_referrers", "top_user_agents", "top_countries"):
        assert result[key] == []


async def test_statistics_are_cached_briefly(applications, tracking, session, cache):
    app = await applications.create("Demo", "demo.example.com")
    stats = StatisticsService(TrackingRepository(session), cache, cache_ttl=30)
    now = datetime.now(timezone.utc)
    start, end = now - timedelta(hours=1), now + timedelta(hours=1)

    await tracking.track(EventInput(app_id=app.app_id, user_agent="UA", url="/a", session_id="s"), app, "1.1.1.1")
    first = await stats.get_statistics(app.app_id, start, end, group_by="hour")
    assert first["total_requests"] == 1
    assert first["top_pages"] == [{"url": "/a", "count": 1}]
    assert first["top_user_agents"] == [{"user_agent": "UA", "count": 1}]

    key = stats_cache_key(app.app_id, start, end, "hour", 10)
    assert 0 < await cache.ttl(key) <= 30

    await tracking.track(EventInput(app_id=app.app_id, user_agent="UA"), app, "1.1.1.1")
    assert (await stats.get_statistics(app.app_id, start, end, group_by="hour"))["total_requests"] == 1

    await cache.delete(key)
    assert (await stats.get_statistics(app.app_id, start, end, group_by="hour"))["total_requests"] == 2


async def test_statistics_survive_cache_outage(session, broken_cache):
    stats = StatisticsService(TrackingRepository(session), broken_cache)
    t = datetime(2024, 3, 1, tzinfo=timezone.utc)
    result = await stats.get_statistics("app1", t, t + timedelta(days=1))
    assert result["total_requests"] == 0
    assert len(result["time_series"]) == 2


async def test_statistics_reject_more_buckets_than_allowed(session, cache):
    stats = StatisticsService(TrackingRepository(session), cache)
    start = datetime(2023, 1, 1, tzinfo=timezone.utc)
    end = start + timedelta(days=400)
    assert bucket_count(start, end, "hour") > MAX_BUCKETS

    with pytest.raises(ValidationFailed) as exc:
        await stats.get_statistics("app1", start, end, group_by="hour")
    assert exc.value.message == "range too large for group_by=hour"

    result = await stats.get_statistics("app1", start, end, group_by="day")
    assert len(result["time_series"]) == bucket_count(start, end, "day") == 401


async def test_custom_param_stats_are_cached(applications, tracking, session, cache):
    app = await applications.create("Demo", "demo.example.com")
    stats = StatisticsService(TrackingRepository(session), cache, cache_ttl=30)
    now = datetime.now(timezone.utc)
    start, end = now - timedelta(hours=1), now + timedelta(hours=1)

    for plan in ("pro", "free", "pro"):
        await tracking.track(EventInput(app_id=app.app_id, user_agent="UA", custom_params={"plan": plan}), app, "1.1.1.1")

    result = await stats.get_custom_param_stats(app.app_id, "plan", start, end)
    assert result["values"] == [{"value": "pro", "count": 2}, {"value": "free", "count": 1}]
    assert 0 < await cache.ttl(custom_stats_cache_key(app.app_id, "plan", start, end, 10)) <= 30

    await tracking.track(EventInput(app_id=app.app_id, user_agent="UA", custom_params={"plan": "free"}), app, "1.1.1.1")
    assert (await stats.get_custom_param_stats(app.app_id, "plan", start, end)) == result


async def test_custom_param_stats_validation(session, cache):
    stats = StatisticsService(TrackingRepository(session), cache)
    t = datetime(2024, 3, 1, tzinfo=timezone.utc)
    for bad in ("", "has space", 'quo"te', "x" * 65):
        with pytest.raises(ValidationFailed):
            await stats.get_custom_param_stats("app1", bad, t, t)
    with pytest.raises(ValidationFailed):
        await stats.get_custom_param_stats("app1", "plan", t + timedelta(days=1), t)
    with pytest.raises(ValidationFailed):
        await stats.get_custom_param_stats("app1", "plan", t, t, limit=101)
