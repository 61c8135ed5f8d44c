"""SCM user rows, keyed by (scope, username) with email as the secondary match."""

from sqlalchemy import func, select

from scmsync.db.models.scm_user import ScmUserRow
from scmsync.repositories.base import BaseRepository


class ScmUserRepository(BaseRepository[ScmUserRow]):
    model = ScmUserRow

    async def get_by_username(self, scope_id: str, username: str) -> ScmUserRow | None:
        return await self.find_one(scope_id=scope_id, username=username)

    async def get_by_email(self, scope_id: str, email: str) -> ScmUserRow | None:
        """Case-insensitive lookup on the secondary matching key."""
        stmt = (
            select(ScmUserRow)
            .where(ScmUserRow.scope_id == scope_id, func.lower(ScmUserRow.email) == email.lower())
            .order_by(ScmUserRow.created_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()
