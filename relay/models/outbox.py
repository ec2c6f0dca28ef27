import enum

from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, Uuid, Enum as SQLEnum, Index, UniqueConstraint
from sqlalchemy.orm import relationship

from relay.database import Base
from relay.models.base import BaseModel


def _status_column(enum_cls, default):
	return Column(
		SQLEnum(enum_cls, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
		default=default,
		nullable=False,
		index=True,
	)


class OutboxMessageStatus(str, enum.Enum):
	PENDING = "pending"
	PROCESSING = "processing"
	PROCESSED = "processed"
	FAILED = "failed"


class OutboxDeliveryStatus(str, enum.Enum):
	PENDING = "pending"
	PROCESSING = "processing"
	SUCCEEDED = "succeeded"
	FAILED = "failed"


class OutboxMessage(Base, BaseModel):
	"""Domain event written in the same transaction as the change that raised it"""
	__tablename__ = "outbox_messages"

	event_type = Column(String(100), nullable=False, index=True)
	payload = Column(Text, nullable=False)
	correlation_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
	status = _status_column(OutboxMessageStatus, OutboxMessageStatus.PENDING)
	attempts = Column(Integer, default=0, nullable=False)
	next_attempt_at = Column(DateTime(timezone=True), index=True)
	last_error = Column(Text)
	processed_at = Column(DateTime(timezone=True))

	deliveries = relationship("OutboxDelivery", back_populates="event", cascade="all, delete-orphan")

	__table_args__ = (
		Index("ix_outbox_messages_status_next_attempt", "status", "next_attempt_at"),
	)


class OutboxDelivery(Base, BaseModel):
	"""One consumer's copy of an outbox message"""
	__tablename__ = "outbox_deliveries"

	event_id = Column(Uuid(as_uuid=True), ForeignKey("outbox_messages.id", ondelete="CASCADE"), nullable=False, index=True)
	handler_name = Column(String(150), nullable=False)
	status = _status_column(OutboxDeliveryStatus, OutboxDeliveryStatus.PENDING)
	attempts = Column(Integer, default=0, nullable=False)
	next_attempt_at = Column(DateTime(timezone=True), index=True)
	last_error = Column(Text)
	processed_at = Column(DateTime(timezone=True))

	event = relationship("OutboxMessage", back_populates="deliveries")

	__table_args__ = (
		UniqueConstraint("event_id", "handler_name", name="uq_outbox_deliveries_event_handler"),
	)
