from typing import List, Optional, Tuple
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, and_, or_
from sqlalchemy.orm import selectinload
from datetime import datetime, timedelta
from relay.database import insert_or_ignore
from relay.models.outbox import OutboxDelivery, OutboxDeliveryStatus, OutboxMessage, OutboxMessageStatus
import logging
import uuid

logger = logging.getLogger(__name__)


class OutboxService:
	"""Store for outbox messages and their per-handler deliveries.

	Nothing here commits except the maintenance operations (release_stale and
	cleanup_old_items); callers decide the transaction boundary.
	"""

	def __init__(self, session: AsyncSession):
		self.session = session

	async def add_message(
			self,
			event_type: str,
			payload: str,
			correlation_id: UUID,
			next_attempt_at: Optional[datetime] = None,
	) -> OutboxMessage:
		"""Add a message to the caller's unit of work"""
		message = OutboxMessage(
			id=uuid.uuid4(),
			event_type=event_type,
			payload=payload,
			correlation_id=correlation_id,
			status=OutboxMessageStatus.PENDING,
			attempts=0,
			next_attempt_at=next_attempt_at,
		)
		self.session.add(message)
		await self.session.flush()

		logger.info(f"Added to outbox: {event_type} message {message.id} correlation {correlation_id}")
		return message

	async def get_dispatchable_messages(self, now: datetime, limit: int = 50) -> List[UUID]:
		"""Pending messages that are due, oldest first"""
		result = await self.session.execute(
			select(OutboxMessage.id)
			.where(
				and_(
					OutboxMessage.status == OutboxMessageStatus.PENDING,
					or_(OutboxMessage.next_attempt_at.is_(None), OutboxMessage.next_attempt_at <= now),
				)
			)
			.order_by(OutboxMessage.created_at)
			.limit(limit)
		)
		return list(result.scalars().all())

	async def try_mark_message_processing(self, message_id: UUID, now: datetime) -> bool:
		result = await self.session.execute(
			update(OutboxMessage)
			.where(
				OutboxMessage.id == message_id,
				OutboxMessage.status == OutboxMessageStatus.PENDING,
			)
			.values(
				status=OutboxMessageStatus.PROCESSING,
				attempts=OutboxMessage.attempts + 1,
				updated_at=now,
			)
			.execution_options(synchronize_session=False)
		)
		return result.rowcount == 1

	async def find_message(self, message_id: UUID) -> Optional[OutboxMessage]:
		result = await self.session.execute(
			select(OutboxMessage)
			.where(OutboxMessage.id == message_id)
			.execution_options(populate_existing=True)
		)
		return result.scalar_one_or_none()

	async def list_messages(
			self,
			status: Optional[OutboxMessageStatus] = None,
			skip: int = 0,
			limit: int = 50,
	) -> List[OutboxMessage]:
		query = select(OutboxMessage)
		if status:
			query = query.where(OutboxMessage.status == status)
		query = query.order_by(OutboxMessage.created_at.desc()).offset(skip).limit(limit)
		result = await self.session.execute(query)
		return list(result.scalars().all())

	async def add_delivery_if_absent(self, event_id: UUID, handler_name: str, now: datetime) -> Optional[UUID]:
		"""Create the (event, handler) delivery unless it exists.

		Returns the new delivery id, or None when another run already created it.
		"""
		delivery_id = uuid.uuid4()
		created = await insert_or_ignore(
			self.session,
			OutboxDelivery.__table__,
			{
				"id": delivery_id,
				"event_id": event_id,
				"handler_name": handler_name,
				"status": OutboxDeliveryStatus.PENDING,
				"attempts": 0,
				"created_at": now,
				"updated_at": now,
			},
			conflict_columns=["event_id", "handler_name"],
		)
		return delivery_id if created else None

	async def get_dispatchable_deliveries(self, now: datetime, limit: int = 50) -> List[UUID]:
		result = await self.session.execute(
			select(OutboxDelivery.id)
			.where(
				and_(
					OutboxDelivery.status == OutboxDeliveryStatus.PENDING,
					or_(OutboxDelivery.next_attempt_at.is_(None), OutboxDelivery.next_attempt_at <= now),
				)
			)
			.order_by(OutboxDelivery.created_at)
			.limit(limit)
		)
		return list(result.scalars().all())

	async def try_mark_delivery_processing(self, delivery_id: UUID, now: datetime) -> bool:
		result = await self.session.execute(
			update(OutboxDelivery)
			.where(
				OutboxDelivery.id == delivery_id,
				OutboxDelivery.status == OutboxDeliveryStatus.PENDING,
				or_(OutboxDelivery.next_attempt_at.is_(None), OutboxDelivery.next_attempt_at <= now),
			)
			.values(
				status=OutboxDeliveryStatus.PROCESSING,
				attempts=OutboxDelivery.attempts + 1,
				updated_at=now,
			)
			.execution_options(synchronize_session=False)
		)
		return result.rowcount == 1

	async def find_delivery_with_event(self, delivery_id: UUID) -> Optional[OutboxDelivery]:
		result = await self.session.execute(
			select(OutboxDelivery)
			.options(selectinload(OutboxDelivery.event))
			.where(OutboxDelivery.id == delivery_id)
			.execution_options(populate_existing=True)
		)
		return result.scalar_one_or_none()

	async def list_deliveries(
			self,
			status: Optional[OutboxDeliveryStatus] = None,
			event_id: Optional[UUID] = None,
			skip: int = 0,
			limit: int = 50,
	) -> List[OutboxDelivery]:
		query = select(OutboxDelivery)
		if status:
			query = query.where(OutboxDelivery.status == status)
		if event_id:
			query = query.where(OutboxDelivery.event_id == event_id)
		query = query.order_by(OutboxDelivery.created_at.desc()).offset(skip).limit(limit)
		result = await self.session.execute(query)
		return list(result.scalars().all())

	async def release_stale(self, now: datetime, timeout: timedelta) -> Tuple[int, int]:
		"""Put rows stuck in processing past the lease back to pending"""
		stale_before = now - timeout

		messages = await self.session.execute(
			update(OutboxMessage)
			.where(
				OutboxMessage.status == OutboxMessageStatus.PROCESSING,
				OutboxMessage.updated_at <= stale_before,
			)
			.values(status=OutboxMessageStatus.PENDING, next_attempt_at=now, updated_at=now)
			.execution_options(synchronize_session=False)
		)
		deliveries = await self.session.execute(
			update(OutboxDelivery)
			.where(
				OutboxDelivery.status == OutboxDeliveryStatus.PROCESSING,
				OutboxDelivery.updated_at <= stale_before,
			)
			.values(status=OutboxDeliveryStatus.PENDING, next_attempt_at=now, updated_at=now)
			.execution_options(synchronize_session=False)
		)
		await self.session.commit()

		if messages.rowcount or deliveries.rowcount:
			logger.warning(
				f"Released {messages.rowcount} stale outbox messages and "
				f"{deliveries.rowcount} stale deliveries back to pending"
			)
		return messages.rowcount, deliveries.rowcount

	async def cleanup_old_items(self, older_than: datetime) -> int:
		"""Delete processed messages whose deliveries all succeeded"""
		unfinished = (
			select(OutboxDelivery.event_id)
			.where(OutboxDelivery.status != OutboxDeliveryStatus.SUCCEEDED)
		)
		expired = (
			select(OutboxMessage.id)
			.where(
				OutboxMessage.status == OutboxMessageStatus.PROCESSED,
				OutboxMessage.processed_at < older_than,
				OutboxMessage.id.not_in(unfinished),
			)
		)
		message_ids = list((await self.session.execute(expired)).scalars().all())
		if not message_ids:
			return 0

		await self.session.execute(
			delete(OutboxDelivery)
			.where(OutboxDelivery.event_id.in_(message_ids))
			.execution_options(synchronize_session=False)
		)
		result = await self.session.execute(
			delete(OutboxMessage)
			.where(OutboxMessage.id.in_(message_ids))
			.execution_options(synchronize_session=False)
		)
		await self.session.commit()

		logger.info(f"Cleaned up {result.rowcount} old outbox messages")
		return result.rowcount
