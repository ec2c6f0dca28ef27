# =====================================
# relay/schemas/dispatch.py
# =====================================
from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from datetime import datetime
from uuid import UUID

from relay.models.command_envelope import ActionExecutionStatus
from relay.models.outbox import OutboxDeliveryStatus, OutboxMessageStatus


class ExecutionLogResponse(BaseModel):
	attempt_number: int
	sequence: int
	handler_name: str
	succeeded: bool
	error_message: Optional[str] = None
	error_details: Optional[str] = None
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


class EnvelopeResponse(BaseModel):
	id: UUID
	correlation_key: UUID
	command_type: str
	status: ActionExecutionStatus
	attempts: int
	last_attempt_at: Optional[datetime] = None
	next_attempt_at: Optional[datetime] = None
	completed_at: Optional[datetime] = None
	last_error: Optional[str] = None
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


class EnvelopeDetailResponse(EnvelopeResponse):
	payload: str
	execution_logs: List[ExecutionLogResponse] = []


class OutboxMessageResponse(BaseModel):
	id: UUID
	event_type: str
	correlation_id: UUID
	status: OutboxMessageStatus
	attempts: int
	next_attempt_at: Optional[datetime] = None
	processed_at: Optional[datetime] = None
	last_error: Optional[str] = None
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


class OutboxDeliveryResponse(BaseModel):
	id: UUID
	event_id: UUID
	handler_name: str
	status: OutboxDeliveryStatus
	attempts: int
	next_attempt_at: Optional[datetime] = None
	processed_at: Optional[datetime] = None
	last_error: Optional[str] = None
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)
