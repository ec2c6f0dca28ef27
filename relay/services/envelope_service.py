from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from uuid import UUID
import logging
import uuid

from sqlalchemy import select, update, delete, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from relay.database import insert_or_ignore
from relay.models.command_envelope import (
	ActionExecutionLog,
	ActionExecutionStatus,
	CommandEnvelope,
)

logger = logging.getLogger(__name__)


class CommandEnvelopeService:
	"""Durable store for command envelopes"""

	def __init__(self, session: AsyncSession):
		self.session = session

	async def add_or_get_existing(
			self,
			correlation_key: UUID,
			command_type: str,
			payload: str,
			now: datetime,
	) -> Tuple[CommandEnvelope, bool]:
		"""Insert a pending envelope unless one exists for the key.

		Returns the persisted envelope and whether this call created it. The
		caller owns the commit.
		"""
		created = await insert_or_ignore(
			self.session,
			CommandEnvelope.__table__,
			{
				"id": uuid.uuid4(),
				"correlation_key": correlation_key,
				"command_type": command_type,
				"payload": payload,
				"status": ActionExecutionStatus.PENDING,
				"attempts": 0,
				"next_attempt_at": now,
				"created_at": now,
				"updated_at": now,
			},
			conflict_columns=["correlation_key"],
		)
		envelope = await self.find_by_correlation_key(correlation_key)
		if envelope is None:
			# Conflicting row was deleted between the insert and the read
			raise LookupError(f"Envelope for correlation {correlation_key} vanished during insert")
		return envelope, created

	async def find_by_id(self, envelope_id: UUID, with_logs: bool = False) -> Optional[CommandEnvelope]:
		query = select(CommandEnvelope).where(CommandEnvelope.id == envelope_id)
		if with_logs:
			query = query.options(selectinload(CommandEnvelope.execution_logs))
		result = await self.session.execute(query.execution_options(populate_existing=True))
		return result.scalar_one_or_none()

	async def find_by_correlation_key(self, correlation_key: UUID) -> Optional[CommandEnvelope]:
		result = await self.session.execute(
			select(CommandEnvelope)
			.where(CommandEnvelope.correlation_key == correlation_key)
			.execution_options(populate_existing=True)
		)
		return result.scalar_one_or_none()

	async def try_claim(self, envelope_id: UUID, now: datetime, processing_timeout: timedelta) -> bool:
		"""Compare-and-set an envelope to processing.

		Only pending envelopes, failed envelopes whose backoff has elapsed and
		processing envelopes whose claim went stale can be claimed.
		"""
		stale_before = now - processing_timeout
		result = await self.session.execute(
			update(CommandEnvelope)
			.where(
				CommandEnvelope.id == envelope_id,
				or_(
					CommandEnvelope.status == ActionExecutionStatus.PENDING,
					and_(
						CommandEnvelope.status == ActionExecutionStatus.FAILED,
						CommandEnvelope.next_attempt_at.is_not(None),
						CommandEnvelope.next_attempt_at <= now,
					),
					and_(
						CommandEnvelope.status == ActionExecutionStatus.PROCESSING,
						CommandEnvelope.last_attempt_at <= stale_before,
					),
				),
			)
			.values(
				status=ActionExecutionStatus.PROCESSING,
				last_attempt_at=now,
				updated_at=now,
			)
			.execution_options(synchronize_session=False)
		)
		return result.rowcount == 1

	async def get_due_for_retry(
			self,
			now: datetime,
			processing_timeout: timedelta,
			limit: int = 100,
	) -> List[UUID]:
		"""Failed envelopes whose backoff elapsed, plus pending or processing
		envelopes that look abandoned"""
		stale_before = now - processing_timeout
		result = await self.session.execute(
			select(CommandEnvelope.id)
			.where(
				or_(
					and_(
						CommandEnvelope.status == ActionExecutionStatus.FAILED,
						CommandEnvelope.next_attempt_at.is_not(None),
						CommandEnvelope.next_attempt_at <= now,
					),
					and_(
						CommandEnvelope.status == ActionExecutionStatus.PROCESSING,
						CommandEnvelope.last_attempt_at <= stale_before,
					),
					and_(
						CommandEnvelope.status == ActionExecutionStatus.PENDING,
						CommandEnvelope.created_at <= stale_before,
					),
				)
			)
			.order_by(CommandEnvelope.next_attempt_at)
			.limit(limit)
		)
		return list(result.scalars().all())

	async def list_envelopes(
			self,
			status: Optional[ActionExecutionStatus] = None,
			skip: int = 0,
			limit: int = 50,
	) -> List[CommandEnvelope]:
		query = select(CommandEnvelope)
		if status:
			query = query.where(CommandEnvelope.status == status)
		query = query.order_by(CommandEnvelope.created_at.desc()).offset(skip).limit(limit)
		result = await self.session.execute(query)
		return list(result.scalars().all())

	async def purge_execution_logs(self, older_than: datetime) -> int:
		"""Delete execution logs of envelopes completed before the cutoff.

		Envelope rows are kept so their correlation keys keep rejecting
		duplicate enqueues. Dead-lettered envelopes keep their logs.
		"""
		completed_before = (
			select(CommandEnvelope.id)
			.where(
				CommandEnvelope.status == ActionExecutionStatus.COMPLETED,
				CommandEnvelope.completed_at < older_than,
			)
		)
		result = await self.session.execute(
			delete(ActionExecutionLog)
			.where(ActionExecutionLog.envelope_id.in_(completed_before))
			.execution_options(synchronize_session=False)
		)
		await self.session.commit()

		if result.rowcount:
			logger.info(f"Purged {result.rowcount} execution log rows of completed command envelopes")
		return result.rowcount
