from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import String, cast, delete, distinct, func, literal_column, select

from accesslog.core.errors import NotFound
from accesslog.models.tracking import TrackingEvent
from accesslog.repositories.base import Repository, store_operation

GROUP_BY_VALUES = ("hour", "day")

_SQLITE_BUCKET_FORMATS = {
    "hour": "%Y-%m-%d %H:00:00",
    "day": "%Y-%m-%d 00:00:00",
}


@dataclass
class SessionSpan:
    session_id: str
    first_seen: datetime
    last_seen: datetime
    events: int

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.last_seen - self.first_seen).total_seconds())


def _as_utc(value) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TrackingRepository(Repository):
    """Append-only event storage plus the aggregate reads used for statistics."""

    @store_operation
    async def create(self, event: TrackingEvent) -> TrackingEvent:
        self.session.add(event)
        await self.session.commit()
        return event

    @store_operation
    async def get_by_id(self, event_id: str) -> TrackingEvent:
        event = await self.session.get(TrackingEvent, event_id)
        if event is None:
            raise NotFound("Tracking event not found")
        return event

    @store_operation
    async def get_by_app_id(self, app_id: str, limit: int, offset: int = 0) -> list[TrackingEvent]:
        res = await self.session.execute(
            select(TrackingEvent)
            .where(TrackingEvent.app_id == app_id)
            .order_by(TrackingEvent.timestamp.desc(), TrackingEvent.id)
            .limit(limit)
            .offset(offset)
        )
        return list(res.scalars().all())

    @store_operation
    async def get_by_session_id(self, session_id: str, app_id: str | None = None) -> list[TrackingEvent]:
        stmt = select(TrackingEvent).where(TrackingEvent.session_id == session_id)
        if app_id is not None:
            stmt = stmt.where(TrackingEvent.app_id == app_id)
        res = await self.session.execute(stmt.order_by(TrackingEvent.timestamp.asc(), TrackingEvent.id))
        return list(res.scalars().all())

    @store_operation
    async def get_by_time_range(
        self,
        app_id: str,
        start: datetime,
        end: datetime,
        limit: int,
        offset: int = 0,
    ) -> list[TrackingEvent]:
        res = await self.session.execute(
            select(TrackingEvent)
            .where(self._in_range(app_id, start, end))
            .order_by(TrackingEvent.timestamp.desc(), TrackingEvent.id)
            .limit(limit)
            .offset(offset)
        )
        return list(res.scalars().all())

    @store_operation
    async def delete_by_app_id(self, app_id: str) -> int:
        res = await self.session.execute(
            delete(TrackingEvent)
            .where(TrackingEvent.app_id == app_id)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return int(res.rowcount or 0)

    @store_operation
    async def delete_by_time_range(self, start: datetime | None, end: datetime, app_id: str | None = None) -> int:
        """Delete events with start <= timestamp <= end; no start means everything up to end."""
        stmt = delete(TrackingEvent).where(TrackingEvent.timestamp <= end)
        if start is not None:
            stmt = stmt.where(TrackingEvent.timestamp >= start)
        if app_id is not None:
            stmt = stmt.where(TrackingEvent.app_id == app_id)
        res = await self.session.execute(stmt.execution_options(synchronize_session=False))
        await self.session.commit()
        return int(res.rowcount or 0)

    @store_operation
    async def count_by_app_id(self, app_id: str) -> int:
        res = await self.session.execute(
            select(func.count()).select_from(TrackingEvent).where(TrackingEvent.app_id == app_id)
        )
        return int(res.scalar_one())

    # aggregates over [start, end]

    @store_operation
    async def count_in_range(self, app_id: str, start: datetime, end: datetime) -> int:
        res = await self.session.execute(
            select(func.count()).select_from(TrackingEvent).where(self._in_range(app_id, start, end))
        )
        return int(res.scalar_one())

    @store_operation
    async def count_distinct(self, column: str, app_id: str, start: datetime, end: datetime) -> int:
        col = getattr(TrackingEvent, column)
        res = await self.session.execute(
            select(func.count(distinct(col))).where(self._in_range(app_id, start, end), col != "")
        )
        return int(res.scalar_one())

    @store_operation
    async def top_values(
        self,
        column: str,
        app_id: str,
        start: datetime,
        end: datetime,
        limit: int = 10,
    ) -> list[tuple[str, int]]:
        """Most frequent non-empty values of a column, ties broken by value."""
        col = getattr(TrackingEvent, column)
        hits = func.count().label("hits")
        res = await self.session.execute(
            select(col, hits)
            .where(self._in_range(app_id, start, end), col != "")
            .group_by(col)
            .order_by(hits.desc(), col.asc())
            .limit(limit)
        )
        return [(value, int(count)) for value, count in res.all()]

    @store_operation
    async def top_custom_values(
        self,
        param: str,
        app_id: str,
        start: datetime,
        end: datetime,
        limit: int = 10,
    ) -> list[tuple[str, int]]:
        """Most frequent values of one custom parameter, as text."""
        # one extraction per row so GROUP BY matches the selected column
        values = (
            select(self._custom_param_expr(param).label("value"))
            .where(self._in_range(app_id, start, end))
            .subquery()
        )
        value = values.c.value
        hits = func.count().label("hits")
        res = await self.session.execute(
            select(value, hits)
            .where(value.is_not(None), value != "")
            .group_by(value)
            .order_by(hits.desc(), value.asc())
            .limit(limit)
        )
        return [(str(v), int(count)) for v, count in res.all()]

    @store_operation
    async def session_spans(self, app_id: str, start: datetime, end: datetime) -> list[SessionSpan]:
        first_seen = func.min(TrackingEvent.timestamp).label("first_seen")
        last_seen = func.max(TrackingEvent.timestamp).label("last_seen")
        res = await self.session.execute(
            select(TrackingEvent.session_id, first_seen, last_seen, func.count().label("events"))
            .where(self._in_range(app_id, start, end), TrackingEvent.session_id != "")
            .group_by(TrackingEvent.session_id)
        )
        return [
            SessionSpan(session_id=sid, first_seen=_as_utc(first), last_seen=_as_utc(last), events=int(n))
            for sid, first, last, n in res.all()
        ]

    @store_operation
    async def time_buckets(
        self,
        app_id: str,
        start: datetime,
        end: datetime,
        group_by: str,
    ) -> dict[datetime, int]:
        """Event counts keyed by the UTC start of each hour or day that has events."""
        bucket = self._bucket_expr(group_by).label("bucket")
        res = await self.session.execute(
            select(bucket, func.count().label("hits"))
            .where(self._in_range(app_id, start, end))
            .group_by(bucket)
        )
        out: dict[datetime, int] = {}
        for value, count in res.all():
            key = _as_utc(value)
            out[key] = out.get(key, 0) + int(count)
        return out

    def _in_range(self, app_id: str, start: datetime, end: datetime):
        return (
            (TrackingEvent.app_id == app_id)
            & (TrackingEvent.timestamp >= start)
            & (TrackingEvent.timestamp <= end)
        )

    def _custom_param_expr(self, param: str):
        col = TrackingEvent.custom_parameters
        if self.dialect == "sqlite":
            path = '$."' + param.replace('"', "") + '"'
            return cast(func.json_extract(col, path), String)
        return func.jsonb_extract_path_text(col, param, type_=String)

    def _bucket_expr(self, group_by: str):
        if group_by not in GROUP_BY_VALUES:
            raise ValueError(f"unsupported group_by: {group_by}")
        if self.dialect == "sqlite":
            return func.strftime(_SQLITE_BUCKET_FORMATS[group_by], TrackingEvent.timestamp)
        # postgres sessions run in UTC (see deps.db)
        return func.date_trunc(literal_column(f"'{group_by}'"), TrackingEvent.timestamp)
