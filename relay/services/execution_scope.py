from contextlib import asynccontextmanager
from functools import cached_property
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relay.notifications.scheduler import EmailScheduler
from relay.services.main_record_service import MainRecordService
from relay.services.outbox_publisher import TransactionalOutboxPublisher
from relay.services.scheduling import Clock, utcnow


class ExecutionScope:
	"""Per-handler unit of work: one session and the services built on it"""

	def __init__(self, session: AsyncSession, clock: Clock = utcnow):
		self.session = session
		self.clock = clock

	@cached_property
	def outbox_publisher(self) -> TransactionalOutboxPublisher:
		return TransactionalOutboxPublisher(self.session)

	@cached_property
	def email_scheduler(self) -> EmailScheduler:
		return EmailScheduler(self.session, self.outbox_publisher)

	@cached_property
	def main_records(self) -> MainRecordService:
		return MainRecordService(self.session)


class ExecutionScopeProvider:
	def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: Clock = utcnow):
		self.session_factory = session_factory
		self.clock = clock

	@asynccontextmanager
	async def open(self) -> AsyncIterator[ExecutionScope]:
		async with self.session_factory() as session:
			yield ExecutionScope(session, clock=self.clock)
