"""SQLAlchemy ORM models - import all to register with Base.metadata."""

from scmsync.db.models.commit import CommitRow
from scmsync.db.models.merge_request import MergeRequestRow
from scmsync.db.models.repository import ScmRepositoryRow
from scmsync.db.models.scan_job import ScanJobRow
from scmsync.db.models.scm_user import ScmUserRow
from scmsync.db.models.trace_log import ScanTraceLogRow

__all__ = [
    "CommitRow",
    "MergeRequestRow",
    "ScanJobRow",
    "ScanTraceLogRow",
    "ScmRepositoryRow",
    "ScmUserRow",
]
