"""Shared test fixtures."""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from scmsync.config import Settings
from scmsync.db.base import Base
# Import all models to register with Base.metadata
import scmsync.db.models  # noqa: F401
from scmsync.models.enums import GitPlatform
from scmsync.platforms.base import PlatformFetchStrategy
from scmsync.scanning.selector import StrategySelector
from scmsync.scanning.service import GitScannerService


class FakeStrategy(PlatformFetchStrategy):
    """In-memory strategy: yields copies of canned records and records each call's window."""

    platform = GitPlatform.GITHUB

    def __init__(self, settings=None):
        super().__init__(settings)
        self.repositories = []
        self.commits = []
        self.merge_requests = []
        self.calls: list[tuple[str, object]] = []
        # Raise commit_error once this many commits have been yielded
        self.fail_commits_after: int | None = None
        self.commit_error: Exception | None = None

    def api_base_url(self, repo):
        return "https://api.github.com"

    def auth_for(self, credential):
        return {}, None

    async def fetch_repositories(self, repo, credential, since=None):
        self.calls.append(("repositories", since))
        return [r.model_copy(deep=True) for r in self.repositories]

    async def iter_commits(self, repo, branch, credential, since, until=None, limit=None):
        self.calls.append(("commits", since))
        for index, commit in enumerate(self.commits):
            if self.commit_error is not None and index == self.fail_commits_after:
                raise self.commit_error
            yield commit.model_copy(deep=True)
        if self.commit_error is not None and self.fail_commits_after == len(self.commits):
            raise self.commit_error

    async def iter_merge_requests(self, repo, branch, credential, since, until=None, limit=None):
        self.calls.append(("merge_requests", since))
        for mr in self.merge_requests:
            yield mr.model_copy(deep=True)


@pytest.fixture
def settings():
    """Settings with fast retries and no rate-limit waits."""
    return Settings(
        rate_limit_enabled=False,
        http_retry_attempts=2,
        http_retry_backoff_seconds=0.0,
        first_scan_lookback_days=30,
        page_size=2,
    )


@pytest.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine so separate sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scmsync_test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_strategy(settings):
    return FakeStrategy(settings)


@pytest.fixture
def selector(settings, fake_strategy):
    return StrategySelector(settings, strategies={GitPlatform.GITHUB: fake_strategy})


@pytest.fixture
async def scanner_service(session_factory, settings, selector):
    service = GitScannerService(session_factory, settings, selector=selector)
    yield service
    await service.shutdown()


@pytest.fixture
def app(db_engine, session_factory, scanner_service):
    """Create a test application instance backed by the test DB and fake strategy."""
    from scmsync.main import create_app

    _app = create_app()
    _app.state.db_engine = db_engine
    _app.state.db_session_factory = session_factory
    _app.state.scanner_service = scanner_service
    _app.state.connection_registry = None
    return _app


@pytest.fixture
async def client(app):
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
