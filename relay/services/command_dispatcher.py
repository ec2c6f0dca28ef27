import enum
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relay.commands.base import ActionCommand, get_discriminator
from relay.monitoring.metrics import commands_dispatched
from relay.services.envelope_service import CommandEnvelopeService
from relay.services.handler_registry import HandlerRegistry
from relay.services.policies import compute_correlation_key
from relay.services.scheduling import Clock, JobScheduler, utcnow

logger = logging.getLogger(__name__)


class EnqueueOutcome(str, enum.Enum):
	ENQUEUED = "enqueued"
	DUPLICATE = "duplicate"
	NO_HANDLERS = "no_handlers"


class CommandDispatcher:
	"""Persists a command envelope and hands its id to the scheduler"""

	def __init__(
			self,
			session_factory: async_sessionmaker[AsyncSession],
			registry: HandlerRegistry,
			scheduler: JobScheduler,
			clock: Clock = utcnow,
	):
		self.session_factory = session_factory
		self.registry = registry
		self.scheduler = scheduler
		self.clock = clock

	async def enqueue(self, command: ActionCommand) -> EnqueueOutcome:
		if command is None:
			raise ValueError("command is required")
		if not isinstance(command, ActionCommand):
			raise TypeError(f"{type(command).__qualname__} is not an ActionCommand")

		command_cls = type(command)
		discriminator = get_discriminator(command_cls)
		payload = command.to_payload()
		correlation_key = compute_correlation_key(discriminator, payload)

		logger.info(f"Dispatching command {discriminator} with correlation {correlation_key}")

		handlers = self.registry.handlers_for(command_cls)
		if not handlers:
			logger.warning(
				f"No handlers registered for command type {discriminator}. Skipping dispatch without enqueue."
			)
			commands_dispatched.labels(outcome=EnqueueOutcome.NO_HANDLERS.value).inc()
			return EnqueueOutcome.NO_HANDLERS

		logger.info(f"Found {len(handlers)} handler(s) for command type {discriminator}")

		async with self.session_factory() as db:
			envelope_service = CommandEnvelopeService(db)
			try:
				envelope, created = await envelope_service.add_or_get_existing(
					correlation_key=correlation_key,
					command_type=discriminator,
					payload=payload,
					now=self.clock(),
				)
				await db.commit()
			except Exception:
				await db.rollback()
				raise

			envelope_id = envelope.id

		if not created:
			logger.info(
				f"Command envelope already exists for correlation {correlation_key} "
				f"(envelope {envelope_id}). Skipping duplicate enqueue."
			)
			commands_dispatched.labels(outcome=EnqueueOutcome.DUPLICATE.value).inc()
			return EnqueueOutcome.DUPLICATE

		logger.info(f"Command envelope {envelope_id} persisted for correlation {correlation_key}")

		self.scheduler.enqueue(envelope_id)
		commands_dispatched.labels(outcome=EnqueueOutcome.ENQUEUED.value).inc()
		logger.info(f"Command envelope {envelope_id} enqueued for orchestration")
		return EnqueueOutcome.ENQUEUED
