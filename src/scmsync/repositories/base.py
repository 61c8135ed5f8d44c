"""Shared async data access for scope-partitioned rows."""

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scmsync.db.base import Base

RowT = TypeVar("RowT", bound=Base)


class BaseRepository(Generic[RowT]):
    """Data access for one ORM row type inside a caller-owned session.

    Synced rows are partitioned by ``scope_id`` and found by their natural
    key within the scope; subclasses set ``model`` and name those lookups.
    Nothing here commits: the caller decides the transaction boundary.
    """

    model: type[RowT]

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, primary_key: str) -> RowT | None:
        return await self.session.get(self.model, primary_key)

    async def find_one(self, **natural_key: Any) -> RowT | None:
        """First row whose columns equal every given value."""
        stmt = select(self.model).where(
            *(getattr(self.model, column) == value for column, value in natural_key.items())
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_for_scope(self, scope_id: str) -> list[RowT]:
        stmt = select(self.model).where(self.model.scope_id == scope_id).order_by(self.model.created_at)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create(self, **values: Any) -> RowT:
        row = self.model(**values)
        self.session.add(row)
        await self.session.flush()
        return row

    async def update(self, row: RowT, **values: Any) -> RowT:
        for column, value in values.items():
            setattr(row, column, value)
        await self.session.flush()
        return row
