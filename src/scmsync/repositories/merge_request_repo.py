"""Merge request rows, keyed by (scope, platform id)."""

from scmsync.db.models.merge_request import MergeRequestRow
from scmsync.repositories.base import BaseRepository


class MergeRequestRepository(BaseRepository[MergeRequestRow]):
    model = MergeRequestRow

    async def get_by_external_id(self, scope_id: str, external_id: str) -> MergeRequestRow | None:
        return await self.find_one(scope_id=scope_id, external_id=external_id)
