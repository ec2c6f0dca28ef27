import enum

from sqlalchemy import Column, String, Integer, Text, DateTime, Boolean, ForeignKey, Uuid, Enum as SQLEnum, Index
from sqlalchemy.orm import relationship

from relay.database import Base
from relay.models.base import BaseModel


class ActionExecutionStatus(str, enum.Enum):
	PENDING = "pending"
	PROCESSING = "processing"
	COMPLETED = "completed"
	FAILED = "failed"
	DEAD_LETTERED = "dead_lettered"


TERMINAL_ENVELOPE_STATUSES = (ActionExecutionStatus.COMPLETED, ActionExecutionStatus.DEAD_LETTERED)


class CommandEnvelope(Base, BaseModel):
	"""Durable record of one logically unique dispatched command"""
	__tablename__ = "command_envelopes"

	correlation_key = Column(Uuid(as_uuid=True), unique=True, nullable=False, index=True)
	command_type = Column(String(255), nullable=False, index=True)
	payload = Column(Text, nullable=False)
	status = Column(
		SQLEnum(ActionExecutionStatus, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
		default=ActionExecutionStatus.PENDING,
		nullable=False,
		index=True,
	)
	attempts = Column(Integer, default=0, nullable=False)
	last_attempt_at = Column(DateTime(timezone=True))
	next_attempt_at = Column(DateTime(timezone=True))
	completed_at = Column(DateTime(timezone=True))
	last_error = Column(Text)

	execution_logs = relationship(
		"ActionExecutionLog",
		back_populates="envelope",
		cascade="all, delete-orphan",
		order_by=lambda: [ActionExecutionLog.attempt_number, ActionExecutionLog.sequence],
	)

	__table_args__ = (
		Index("ix_command_envelopes_status_next_attempt", "status", "next_attempt_at"),
	)

	@property
	def is_terminal(self) -> bool:
		return self.status in TERMINAL_ENVELOPE_STATUSES


class ActionExecutionLog(Base, BaseModel):
	"""Outcome of one handler on one orchestration attempt"""
	__tablename__ = "action_execution_logs"

	envelope_id = Column(Uuid(as_uuid=True), ForeignKey("command_envelopes.id", ondelete="CASCADE"), nullable=False, index=True)
	attempt_number = Column(Integer, nullable=False)
	sequence = Column(Integer, nullable=False, default=0)
	handler_name = Column(String(255), nullable=False)
	succeeded = Column(Boolean, nullable=False)
	error_message = Column(String(400))
	error_details = Column(Text)

	envelope = relationship("CommandEnvelope", back_populates="execution_logs")
