"""Discovered repository rows, keyed by (scope, full name)."""

from scmsync.db.models.repository import ScmRepositoryRow
from scmsync.repositories.base import BaseRepository


class ScmRepositoryRepository(BaseRepository[ScmRepositoryRow]):
    model = ScmRepositoryRow

    async def get_by_full_name(self, scope_id: str, full_name: str) -> ScmRepositoryRow | None:
        return await self.find_one(scope_id=scope_id, full_name=full_name)
