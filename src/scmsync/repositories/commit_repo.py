"""Commit rows, keyed by (scope, sha)."""

from scmsync.db.models.commit import CommitRow
from scmsync.repositories.base import BaseRepository


class CommitRepository(BaseRepository[CommitRow]):
    model = CommitRow

    async def get_by_sha(self, scope_id: str, sha: str) -> CommitRow | None:
        return await self.find_one(scope_id=scope_id, sha=sha)
