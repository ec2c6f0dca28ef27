import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./relay_test.db")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("EMAIL_DUMMY_OUTPUT_DIR", os.path.join(tempfile.gettempdir(), "relay-test-emails"))

from datetime import datetime, timedelta
from typing import AsyncGenerator, List
from uuid import UUID

import pytest
from sqlalchemy import NullPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import relay.models  # noqa: F401
from relay.database import Base
from relay.models.base import utcnow


class RecordingScheduler:
	"""Job scheduler that remembers ids instead of talking to the broker"""

	def __init__(self):
		self.ids: List[UUID] = []

	def enqueue(self, durable_id: UUID) -> None:
		self.ids.append(durable_id)


class MutableClock:
	def __init__(self, now: datetime):
		self.now = now

	def __call__(self) -> datetime:
		return self.now

	def advance(self, delta: timedelta):
		self.now = self.now + delta


def as_naive(value: datetime) -> datetime:
	"""SQLite hands datetimes back without tzinfo"""
	return value.replace(tzinfo=None) if value is not None else None


@pytest.fixture
async def engine(tmp_path):
	"""File backed SQLite engine so separate sessions see each other's commits"""
	engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'relay.db'}", poolclass=NullPool)

	async with engine.begin() as conn:
		await conn.run_sync(Base.metadata.create_all)

	yield engine

	await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
	return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
	async with session_factory() as session:
		yield session


@pytest.fixture
def scheduler() -> RecordingScheduler:
	return RecordingScheduler()


@pytest.fixture
def clock() -> MutableClock:
	# onupdate timestamps come from the real clock, so start from it
	return MutableClock(utcnow())
