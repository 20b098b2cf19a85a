"""Test fixtures, fakes for the store, the change feed and the canvas.

Learn: The change-propagation core has no hard dependency on PostgreSQL:
the watcher takes a lookup callable and a feed factory, the accrual job
takes a repository. Tests inject in-memory versions of each, so the
whole suite runs without a database or Redis. The few store tests that
need PostgreSQL use db_connection and skip when it is unreachable.

API tests build the real app and hang a fake CanvasContext on app.state,
overriding the service and auth dependencies the way FastAPI intends.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pixelmap.auth.dependencies import CurrentIdentity, get_current_user
from pixelmap.auth.password import hash_password
from pixelmap.config import Settings
from pixelmap.db.models import Base
from pixelmap.realtime.events import PixelEvent
from pixelmap.realtime.feed import ChangeFeedClosed
from pixelmap.realtime.gate import BroadcastGate
from pixelmap.realtime.watcher import ChangeFeedWatcher
from pixelmap.services.user_service import EmailTakenError

TEST_USER_ID = "00000000-0000-0000-0000-000000000001"


# ─── Change feed fakes ────────────────────────────────────


class FakeFeed:
    """Yields the given payloads, then ends (or raises ChangeFeedClosed)."""

    def __init__(self, payloads, *, close_with_error=False, on_exhausted=None):
        self.payloads = list(payloads)
        self.close_with_error = close_with_error
        self.on_exhausted = on_exhausted
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for payload in self.payloads:
            yield payload
        if self.on_exhausted:
            self.on_exhausted()
        if self.close_with_error:
            raise ChangeFeedClosed("connection lost")

    async def close(self):
        self.closed = True


class FakePixelStore:
    """In-memory pixel table keyed by id; doubles as the watcher lookup."""

    def __init__(self, docs=None):
        self.docs = dict(docs or {})
        self.lookups = []

    async def lookup(self, document_key):
        self.lookups.append(document_key)
        doc = self.docs.get(document_key)
        return PixelEvent.from_document(doc) if doc else None


def drain(session):
    """Everything queued for a session, without waiting."""
    messages = []
    while not session.queue.empty():
        messages.append(session.queue.get_nowait())
    return messages


@pytest.fixture()
def gate():
    return BroadcastGate(namespace="/api/v1/socket", queue_size=8)


@pytest.fixture()
def store():
    return FakePixelStore()


@pytest.fixture()
def watcher(gate, store):
    return ChangeFeedWatcher(gate=gate, lookup=store.lookup, backoff_base=0)


# ─── Canvas / API fakes ───────────────────────────────────


class FakeConnection:
    async def execute(self, statement):
        return None


class FakeEngine:
    """Engine double: connect() succeeds or raises `error`; dispose() is recorded."""

    def __init__(self, error=None, on_dispose=None):
        self.error = error
        self.on_dispose = on_dispose
        self.connect_calls = 0
        self.disposed = False

    @asynccontextmanager
    async def connect(self):
        self.connect_calls += 1
        if self.error is not None:
            raise self.error
        yield FakeConnection()

    async def dispose(self):
        if self.on_dispose:
            self.on_dispose()
        self.disposed = True


class FakePixelService:
    """Stands in for PixelService behind the pixel map routes."""

    def __init__(self):
        self.pixels = {}

    def _pixel(self, row, color, state, owner_id=None):
        return SimpleNamespace(
            id=uuid.uuid4(),
            row=row,
            color=color,
            state=state,
            owner_id=owner_id,
            updated_at=None,
        )

    def seed(self, row, color, state="claimed"):
        self.pixels[row] = self._pixel(row, color, state)

    async def list_pixels(self):
        return [self.pixels[r] for r in sorted(self.pixels)]

    async def get_by_row(self, row):
        return self.pixels.get(row)

    async def paint(self, row, color, state="claimed", owner_id=None):
        pixel = self._pixel(row, color, state, owner_id)
        self.pixels[row] = pixel
        return pixel


class FakeUserService:
    """Stands in for UserService behind the auth and user routes."""

    def __init__(self):
        self.users = {}

    def _add(self, email, name, password_hash, point=0, user_id=None):
        user = SimpleNamespace(
            id=uuid.UUID(user_id) if user_id else uuid.uuid4(),
            email=email,
            name=name,
            password_hash=password_hash,
            point=point,
            created_at=datetime.now(timezone.utc),
        )
        self.users[user.id] = user
        return user

    def seed(self, email="ada@example.com", password="correct-horse", point=0, user_id=None):
        return self._add(
            email, "Ada", hash_password(password, rounds=4), point=point, user_id=user_id
        )

    async def get(self, user_id):
        return self.users.get(user_id)

    async def get_by_email(self, email):
        return next((u for u in self.users.values() if u.email == email), None)

    async def create(self, email, name, password_hash):
        if await self.get_by_email(email):
            raise EmailTakenError(email)
        return self._add(email, name, password_hash)


def make_canvas(settings=None):
    settings = settings or Settings()
    gate = BroadcastGate(namespace=settings.socket_path)
    return SimpleNamespace(
        settings=settings,
        engine=FakeEngine(),
        redis=None,
        gate=gate,
        watcher=ChangeFeedWatcher(gate=gate, lookup=FakePixelStore().lookup),
    )


def build_app(pixel_service, user_service, settings=None):
    """The real app with a fake canvas and fake services (no lifespan)."""
    from pixelmap.api.auth import _users
    from pixelmap.api.pixelmap import _svc
    from pixelmap.main import create_app

    settings = settings or Settings()
    application = create_app(settings)
    application.state.canvas = make_canvas(settings)
    application.dependency_overrides[_svc] = lambda: pixel_service
    application.dependency_overrides[_users] = lambda: user_service
    return application


def authenticate(application, user_id=TEST_USER_ID):
    application.dependency_overrides[get_current_user] = lambda: CurrentIdentity(
        user_id=user_id
    )


@pytest.fixture()
def pixel_service():
    return FakePixelService()


@pytest.fixture()
def user_service():
    return FakeUserService()


@pytest_asyncio.fixture()
async def app(pixel_service, user_service):
    application = build_app(pixel_service, user_service)
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client authenticated as TEST_USER_ID."""
    authenticate(app)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture()
async def unauthenticated_client(app):
    """HTTP client WITHOUT the auth override, for 401 checks."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ─── Database (PostgreSQL) ────────────────────────────────


@pytest_asyncio.fixture()
async def db_connection():
    """A connection inside an outer transaction, rolled back after the test.

    Learn: Every commit() made through db_session_factory becomes a
    SAVEPOINT on this connection, the outer rollback discards it all.
    Tables are created inside the outer transaction too (PostgreSQL DDL
    is transactional). Tests using this fixture are skipped when
    PIXELMAP_DATABASE_URL isn't reachable.
    """
    engine = create_async_engine(Settings().database_url, echo=False)
    try:
        conn = await asyncio.wait_for(engine.connect().start(), timeout=3)
    except Exception as e:
        await engine.dispose()
        pytest.skip(f"PostgreSQL not reachable: {e}")

    trans = await conn.begin()
    try:
        await conn.run_sync(Base.metadata.create_all)
        yield conn
    finally:
        await trans.rollback()
        await conn.close()
        await engine.dispose()


@pytest.fixture()
def db_session_factory(db_connection):
    """Session factory whose commit() becomes a SAVEPOINT on db_connection."""
    return async_sessionmaker(
        bind=db_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest_asyncio.fixture()
async def db_session(db_session_factory):
    async with db_session_factory() as session:
        yield session
