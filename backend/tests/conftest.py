"""
Code Journal Backend — Test Configuration (conftest.py)
========================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Every test gets its own SQLite database (sqlite+aiosqlite, created with
       Base.metadata.create_all) and its own filesystem store root under
       tmp_path. The module-level engine, session factory and filesystem
       singleton are pointed at them, so API tests exercise the same objects
       the application uses.

Fixture Hierarchy:
    Function-scoped:
    ├── mock_db_session: AsyncMock standing in for AsyncSession
    ├── db_engine:  fresh engine + schema, swapped into codejournal.database
    ├── db:         AsyncSession on that engine
    ├── fs_store:   filesystem store rooted in tmp_path (shared singleton)
    ├── users:      publisher / reviewer / second reviewer / editor IDs
    └── client:     httpx AsyncClient over ASGITransport
"""

import os
import tempfile

# Override settings for testing BEFORE any codejournal imports
_TEST_ROOT = tempfile.mkdtemp(prefix="codejournal_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_ROOT}/bootstrap.db"
os.environ["STORAGE_ROOT"] = os.path.join(_TEST_ROOT, "filesystem")
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["RECONCILE_ON_STARTUP"] = "false"
os.environ["EDITOR_EMAILS"] = "editor@example.com"
os.environ["LOG_LEVEL"] = "WARNING"

import base64  # noqa: E402
from types import SimpleNamespace  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

import codejournal.models  # noqa: E402,F401
from codejournal import database  # noqa: E402
from codejournal.models import Capability, GlobalUser, User  # noqa: E402
from codejournal.services.filesystem import filesystem_store  # noqa: E402
from codejournal.services.relational import relational_store  # noqa: E402

TEST_PASSWORD = "Secret#123"


def b64(text) -> str:
    data = text.encode("utf-8") if isinstance(text, str) else text
    return base64.b64encode(data).decode("ascii")


async def fetch_user(db: AsyncSession, user_id: str) -> GlobalUser:
    """
    Re-read a GlobalUser. A rolled-back session expires every instance, so
    tests resolve callers by ID after an expected failure.
    """
    return await relational_store.get_global_user(db, user_id)


async def in_own_session(user_id: str, action):
    """
    Run `action(session, caller)` on a fresh session, the way a separate
    request would. Used with asyncio.gather for concurrent callers.
    """
    async with database.async_session_factory() as session:
        caller = await fetch_user(session, user_id)
        return await action(session, caller)


async def make_user(
    db: AsyncSession,
    email: str,
    capabilities: Capability,
    first_name: str = "Test",
    last_name: str = "User",
) -> str:
    """Insert a user directly (no bcrypt round) and return its global ID."""
    from codejournal.services.identifiers import mint_global_user_id

    user = User(
        email=email,
        password_hash="not-a-real-hash",
        first_name=first_name,
        last_name=last_name,
    )
    global_user = await relational_store.insert_user(db, user, mint_global_user_id(), capabilities)
    await db.commit()
    return global_user.id


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures (created fresh for each test)
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def mock_db_session():
    """
    A mock async database session.

    For code that only commits or rolls back (the unit of work), so that a
    failing commit can be simulated with `commit.side_effect`.
    """
    session = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.add = MagicMock()
    return session


@pytest_asyncio.fixture
async def db_engine(tmp_path, monkeypatch):
    """A fresh SQLite database with every table, installed as the app engine."""
    engine = database.build_engine(f"sqlite+aiosqlite:///{tmp_path / 'journal.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(database.Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(database, "async_session_factory", factory)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(db_engine):
    async with database.async_session_factory() as session:
        yield session


@pytest.fixture
def fs_store(tmp_path, monkeypatch):
    """
    The shared filesystem store, re-rooted under tmp_path.

    Every service singleton holds this same object, so re-rooting it isolates
    the whole application.
    """
    root = (tmp_path / "filesystem").resolve()
    root.mkdir()
    monkeypatch.setattr(filesystem_store, "storage_root", root)
    return filesystem_store


@pytest_asyncio.fixture
async def users(db):
    """IDs of a publisher, two reviewers and an editor (who also reviews)."""
    return SimpleNamespace(
        publisher=await make_user(db, "pub@example.com", Capability.PUBLISHER, "Pat", "Publisher"),
        reviewer=await make_user(db, "rev@example.com", Capability.REVIEWER, "Rae", "Reviewer"),
        reviewer2=await make_user(db, "rev2@example.com", Capability.REVIEWER, "Rob", "Reviewer"),
        editor=await make_user(
            db,
            "ed@example.com",
            Capability.REVIEWER | Capability.EDITOR,
            "Eve",
            "Editor",
        ),
    )


@pytest_asyncio.fixture
async def client(db_engine, fs_store):
    """
    HTTPX AsyncClient talking to the FastAPI app in-process.

    ASGITransport does not run the lifespan, so startup work (self token,
    reconciliation) is invoked explicitly by the tests that need it.
    """
    from codejournal.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
