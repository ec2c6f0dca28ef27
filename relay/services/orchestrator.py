"""Runs every handler registered for a persisted command envelope.

One orchestration is one attempt. Each handler gets its own execution scope
(session and connection), handlers run concurrently up to the configured
parallelism, and a failing handler never stops its siblings. The envelope is
then completed, scheduled for a retry, or dead-lettered.
"""
import asyncio
import logging
import traceback
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relay.commands.base import ActionCommand
from relay.config import settings
from relay.core.exceptions import CommandPayloadError, UnknownCommandTypeError
from relay.models.command_envelope import ActionExecutionLog, ActionExecutionStatus, CommandEnvelope
from relay.monitoring.metrics import envelopes_finalized, handler_executions
from relay.services.envelope_service import CommandEnvelopeService
from relay.services.execution_scope import ExecutionScopeProvider
from relay.services.handler_registry import HandlerRegistry, handler_name
from relay.services.policies import compute_backoff, to_safe_error, truncate
from relay.services.scheduling import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass
class HandlerOutcome:
	handler_name: str
	error_message: Optional[str] = None
	error_details: Optional[str] = None

	@property
	def succeeded(self) -> bool:
		return self.error_message is None


class BackgroundOrchestrator:
	def __init__(
			self,
			session_factory: async_sessionmaker[AsyncSession],
			registry: HandlerRegistry,
			scope_provider: Optional[ExecutionScopeProvider] = None,
			clock: Clock = utcnow,
			max_parallelism: int = settings.DISPATCH_MAX_PARALLELISM,
			max_attempts: int = settings.DISPATCH_MAX_RETRY_ATTEMPTS,
			processing_timeout: timedelta = timedelta(seconds=settings.DISPATCH_PROCESSING_TIMEOUT_SECONDS),
	):
		if max_parallelism < 1:
			raise ValueError("max_parallelism must be at least 1")
		self.session_factory = session_factory
		self.registry = registry
		self.scope_provider = scope_provider or ExecutionScopeProvider(session_factory, clock=clock)
		self.clock = clock
		self.max_parallelism = max_parallelism
		self.max_attempts = max_attempts
		self.processing_timeout = processing_timeout

	async def orchestrate(self, envelope_id: UUID) -> Optional[ActionExecutionStatus]:
		async with self.session_factory() as db:
			envelopes = CommandEnvelopeService(db)

			envelope = await envelopes.find_by_id(envelope_id)
			if envelope is None:
				logger.warning(f"Command envelope {envelope_id} not found. Skipping orchestration.")
				return None
			if envelope.is_terminal:
				logger.info(f"Command envelope {envelope_id} already {envelope.status.value}. Nothing to do.")
				return envelope.status

			claimed = await envelopes.try_claim(envelope_id, self.clock(), self.processing_timeout)
			await db.commit()
			envelope = await envelopes.find_by_id(envelope_id)
			if not claimed:
				logger.info(
					f"Command envelope {envelope_id} is claimed elsewhere or not yet due. Skipping orchestration."
				)
				return envelope.status if envelope else None

			logger.info(
				f"Orchestrating command envelope {envelope_id} ({envelope.command_type}), "
				f"attempt {envelope.attempts + 1}"
			)

			try:
				command = self.registry.command_types.deserialize(envelope.command_type, envelope.payload)
			except (UnknownCommandTypeError, CommandPayloadError) as e:
				logger.error(f"Command envelope {envelope_id} cannot be rebuilt: {e}")
				return await self._dead_letter(db, envelope, to_safe_error(e))

			handlers = self.registry.handlers_for(type(command))
			if not handlers:
				logger.warning(
					f"No handlers registered for command type {envelope.command_type}. "
					f"Completing envelope {envelope_id}."
				)
				return await self._complete(db, envelope)

			# end the read transaction before handlers open their own
			await db.commit()

			outcomes = await self._run_handlers(envelope_id, command, handlers)
			return await self._record_attempt(db, envelope, outcomes)

	async def _run_handlers(
			self,
			envelope_id: UUID,
			command: ActionCommand,
			handlers: Sequence[type],
	) -> List[HandlerOutcome]:
		semaphore = asyncio.Semaphore(self.max_parallelism)

		async def run(handler_cls: type) -> HandlerOutcome:
			async with semaphore:
				return await self._run_handler(envelope_id, command, handler_cls)

		return list(await asyncio.gather(*(run(handler_cls) for handler_cls in handlers)))

	async def _run_handler(self, envelope_id: UUID, command: ActionCommand, handler_cls: type) -> HandlerOutcome:
		name = handler_name(handler_cls)
		try:
			async with self.scope_provider.open() as scope:
				handler = handler_cls(scope)
				await handler.execute(command)
		except Exception as e:
			logger.exception(f"Handler {name} failed for command envelope {envelope_id}")
			handler_executions.labels(handler=name, outcome="failed").inc()
			return HandlerOutcome(
				handler_name=name,
				error_message=to_safe_error(e),
				error_details=traceback.format_exc(),
			)

		handler_executions.labels(handler=name, outcome="succeeded").inc()
		logger.info(f"Handler {name} completed for command envelope {envelope_id}")
		return HandlerOutcome(handler_name=name)

	async def _record_attempt(
			self,
			db: AsyncSession,
			envelope: CommandEnvelope,
			outcomes: List[HandlerOutcome],
	) -> ActionExecutionStatus:
		attempt_number = envelope.attempts + 1
		for sequence, outcome in enumerate(outcomes):
			db.add(ActionExecutionLog(
				envelope_id=envelope.id,
				attempt_number=attempt_number,
				sequence=sequence,
				handler_name=outcome.handler_name,
				succeeded=outcome.succeeded,
				error_message=outcome.error_message,
				error_details=outcome.error_details,
			))

		failures = [outcome for outcome in outcomes if not outcome.succeeded]
		if not failures:
			return await self._complete(db, envelope)

		now = self.clock()
		envelope.attempts = attempt_number
		envelope.last_error = truncate("; ".join(f"{o.handler_name}: {o.error_message}" for o in failures))

		if envelope.attempts >= self.max_attempts:
			logger.error(
				f"Command envelope {envelope.id} dead-lettered after {envelope.attempts} attempts: "
				f"{len(failures)}/{len(outcomes)} handler(s) failed"
			)
			return await self._finalize(db, envelope, ActionExecutionStatus.DEAD_LETTERED)

		envelope.next_attempt_at = now + compute_backoff(envelope.attempts)
		logger.warning(
			f"Command envelope {envelope.id} failed attempt {envelope.attempts}: "
			f"{len(failures)}/{len(outcomes)} handler(s) failed. Next attempt at {envelope.next_attempt_at}"
		)
		return await self._finalize(db, envelope, ActionExecutionStatus.FAILED)

	async def _complete(self, db: AsyncSession, envelope: CommandEnvelope) -> ActionExecutionStatus:
		envelope.completed_at = self.clock()
		envelope.next_attempt_at = None
		envelope.last_error = None
		logger.info(f"Command envelope {envelope.id} completed")
		return await self._finalize(db, envelope, ActionExecutionStatus.COMPLETED)

	async def _dead_letter(self, db: AsyncSession, envelope: CommandEnvelope, reason: str) -> ActionExecutionStatus:
		envelope.attempts += 1
		envelope.last_error = truncate(reason)
		return await self._finalize(db, envelope, ActionExecutionStatus.DEAD_LETTERED)

	async def _finalize(
			self,
			db: AsyncSession,
			envelope: CommandEnvelope,
			status: ActionExecutionStatus,
	) -> ActionExecutionStatus:
		envelope.status = status
		if status == ActionExecutionStatus.DEAD_LETTERED:
			envelope.next_attempt_at = None
		await db.commit()
		envelopes_finalized.labels(status=status.value).inc()
		return status
