import enum

from sqlalchemy import Column, String, Integer, Text, DateTime, Uuid, Enum as SQLEnum, UniqueConstraint, Index

from relay.database import Base
from relay.models.base import BaseModel


class NotificationChannel(str, enum.Enum):
	EMAIL = "email"


class NotificationStatus(str, enum.Enum):
	PENDING = "pending"
	SENT = "sent"
	FAILED = "failed"


class NotificationMessage(Base, BaseModel):
	__tablename__ = "notification_messages"

	channel = Column(
		SQLEnum(NotificationChannel, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
		default=NotificationChannel.EMAIL,
		nullable=False,
	)
	type = Column(String(100), nullable=False)
	correlation_id = Column(Uuid(as_uuid=True), nullable=False)
	recipient = Column(String(320), nullable=False)
	payload = Column(Text, nullable=False)
	status = Column(
		SQLEnum(NotificationStatus, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
		default=NotificationStatus.PENDING,
		nullable=False,
	)
	attempts = Column(Integer, default=0, nullable=False)
	last_attempt_at = Column(DateTime(timezone=True))
	sent_at = Column(DateTime(timezone=True))
	last_error = Column(Text)

	__table_args__ = (
		UniqueConstraint("type", "correlation_id", "recipient", name="uq_notification_messages_type_correlation_recipient"),
		Index("ix_notification_messages_status_created", "status", "created_at"),
	)
