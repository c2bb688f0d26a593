"""
Pytest Configuration and Fixtures
Shared fixtures and configuration for all tests
"""

from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from workspace_acl.core.cache import PermissionCache
from workspace_acl.db.models import User
from workspace_acl.db.session import create_engine_for_url, create_session_factory, create_tables
from workspace_acl.models.file import FileType
from workspace_acl.models.user import Principal, UserRole
from workspace_acl.services.workspace import WorkspacePermissionService


# ============================================
# PYTEST CONFIGURATION
# ============================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, isolated)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests against a real SQLite database"
    )
    config.addinivalue_line(
        "markers", "slow: Slow running tests"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add default markers"""
    for item in items:
        # Add markers based on test file path
        if "/unit/" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


# ============================================
# CLOCK
# ============================================

class FakeClock:
    """Manually advanced clock for deterministic TTL tests"""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def permission_cache(fake_clock) -> PermissionCache:
    """Fresh cache with a 30s TTL driven by the fake clock"""
    return PermissionCache(ttl_seconds=30, clock=fake_clock)


# ============================================
# DATABASE FIXTURES
# ============================================

@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite database, one per test"""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'workspace.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def users(session_factory):
    """Seed an admin and three members"""
    async with session_factory() as session:
        async with session.begin():
            session.add_all([
                User(id="admin", email="admin@example.com", name="Admin", role=UserRole.ADMIN),
                User(id="alice", email="alice@example.com", name="Alice"),
                User(id="bob", email="bob@example.com", name="Bob"),
                User(id="carol", email="carol@example.com", name="Carol"),
            ])
    return {
        "admin": Principal(user_id="admin", role=UserRole.ADMIN),
        "alice": Principal(user_id="alice"),
        "bob": Principal(user_id="bob"),
        "carol": Principal(user_id="carol"),
    }


@pytest.fixture
def service(session_factory, permission_cache) -> WorkspacePermissionService:
    """Service with rebuilds awaited inline"""
    return WorkspacePermissionService(
        session_factory, cache=permission_cache, rebuild_mode="sync"
    )


@pytest_asyncio.fixture
async def tree(service, users):
    """
    Sample workspace:

        root (folder)
        ├── projects (folder)
        │   ├── alpha (programme)
        │   │   └── spec (page)
        │   └── budget (sheet)
        └── archive (folder)
    """
    h = service.hierarchy
    root = await h.create_file("root", FileType.FOLDER)
    projects = await h.create_file("projects", FileType.FOLDER, root.id)
    alpha = await h.create_file("alpha", FileType.PROGRAMME, projects.id)
    spec = await h.create_file("spec", FileType.PAGE, alpha.id)
    budget = await h.create_file("budget", FileType.SHEET, projects.id)
    archive = await h.create_file("archive", FileType.FOLDER, root.id)
    return {
        "root": root.id,
        "projects": projects.id,
        "alpha": alpha.id,
        "spec": spec.id,
        "budget": budget.id,
        "archive": archive.id,
    }
