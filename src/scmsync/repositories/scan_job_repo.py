"""Asynchronous scan job rows."""

from scmsync.db.models.scan_job import ScanJobRow
from scmsync.repositories.base import BaseRepository


class ScanJobRepository(BaseRepository[ScanJobRow]):
    model = ScanJobRow
