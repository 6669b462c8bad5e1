from sqlalchemy import delete, func, select, update

from accesslog.core.errors import NotFound
from accesslog.core.keys import generate_api_key, generate_id
from accesslog.models.application import Application
from accesslog.models.base import utcnow
from accesslog.repositories.base import Repository, store_operation

UPDATABLE_FIELDS = ("name", "description", "domain", "active")


class ApplicationRepository(Repository):
    @store_operation
    async def create(self, app: Application) -> Application:
        now = utcnow()
        if not app.app_id:
            app.app_id = generate_id()
        if not app.api_key:
            app.api_key = generate_api_key()
        if app.description is None:
            app.description = ""
        if app.active is None:
            app.active = True
        app.created_at = now
        app.updated_at = now

        self.session.add(app)
        await self.session.commit()
        return app

    @store_operation
    async def get_by_id(self, app_id: str) -> Application:
        app = await self.session.get(Application, app_id, populate_existing=True)
        if app is None:
            raise NotFound("Application not found")
        return app

    @store_operation
    async def get_by_api_key(self, api_key: str) -> Application:
        res = await self.session.execute(select(Application).where(Application.api_key == api_key))
        app = res.scalar_one_or_none()
        if app is None:
            raise NotFound("Application not found")
        return app

    @store_operation
    async def update(self, app_id: str, changes: dict) -> Application:
        values = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
        values["updated_at"] = utcnow()

        res = await self.session.execute(
            update(Application).where(Application.app_id == app_id).values(**values)
        )
        if res.rowcount == 0:
            await self.session.rollback()
            raise NotFound("Application not found")
        await self.session.commit()

        app = await self.session.get(Application, app_id, populate_existing=True)
        if app is None:
            raise NotFound("Application not found")
        return app

    @store_operation
    async def delete(self, app_id: str) -> None:
        res = await self.session.execute(delete(Application).where(Application.app_id == app_id))
        if res.rowcount == 0:
            await self.session.rollback()
            raise NotFound("Application not found")
        await self.session.commit()

    @store_operation
    async def regenerate_api_key(self, app_id: str) -> str:
        new_key = generate_api_key()
        res = await self.session.execute(
            update(Application)
            .where(Application.app_id == app_id)
            .values(api_key=new_key, updated_at=utcnow())
        )
        if res.rowcount == 0:
            await self.session.rollback()
            raise NotFound("Application not found")
        await self.session.commit()
        return new_key

    @store_operation
    async def list(self, limit: int, offset: int = 0) -> list[Application]:
        res = await self.session.execute(
            select(Application)
            .order_by(Application.created_at.desc(), Application.app_id)
            .limit(limit)
            .offset(offset)
        )
        return list(res.scalars().all())

    @store_operation
    async def count(self) -> int:
        res = await self.session.execute(select(func.count()).select_from(Application))
        return int(res.scalar_one())
