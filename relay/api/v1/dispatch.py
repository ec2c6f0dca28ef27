# =====================================
# relay/api/v1/dispatch.py
# =====================================
from fastapi import APIRouter, Depends, Query, HTTPException, status
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from relay.database import get_session
from relay.models.command_envelope import ActionExecutionStatus
from relay.models.outbox import OutboxDeliveryStatus, OutboxMessageStatus
from relay.schemas.dispatch import (
	EnvelopeDetailResponse,
	EnvelopeResponse,
	OutboxDeliveryResponse,
	OutboxMessageResponse,
)
from relay.services.envelope_service import CommandEnvelopeService
from relay.services.outbox_service import OutboxService

router = APIRouter()


@router.get("/envelopes", response_model=List[EnvelopeResponse])
async def list_envelopes(
		status: Optional[ActionExecutionStatus] = None,
		skip: int = Query(0, ge=0),
		limit: int = Query(50, ge=1, le=200),
		session: AsyncSession = Depends(get_session),
):
	"""List command envelopes, newest first"""
	envelopes = await CommandEnvelopeService(session).list_envelopes(status=status, skip=skip, limit=limit)
	return [EnvelopeResponse.model_validate(envelope) for envelope in envelopes]


@router.get("/envelopes/{envelope_id}", response_model=EnvelopeDetailResponse)
async def get_envelope(
		envelope_id: UUID,
		session: AsyncSession = Depends(get_session),
):
	"""Get an envelope with its execution log"""
	envelope = await CommandEnvelopeService(session).find_by_id(envelope_id, with_logs=True)
	if not envelope:
		raise HTTPException(
			status_code=status.HTTP_404_NOT_FOUND,
			detail="Envelope not found"
		)
	return EnvelopeDetailResponse.model_validate(envelope)


@router.get("/outbox/messages", response_model=List[OutboxMessageResponse])
async def list_outbox_messages(
		status: Optional[OutboxMessageStatus] = None,
		skip: int = Query(0, ge=0),
		limit: int = Query(50, ge=1, le=200),
		session: AsyncSession = Depends(get_session),
):
	messages = await OutboxService(session).list_messages(status=status, skip=skip, limit=limit)
	return [OutboxMessageResponse.model_validate(message) for message in messages]


@router.get("/outbox/deliveries", response_model=List[OutboxDeliveryResponse])
async def list_outbox_deliveries(
		status: Optional[OutboxDeliveryStatus] = None,
		event_id: Optional[UUID] = None,
		skip: int = Query(0, ge=0),
		limit: int = Query(50, ge=1, le=200),
		session: AsyncSession = Depends(get_session),
):
	deliveries = await OutboxService(session).list_deliveries(
		status=status, event_id=event_id, skip=skip, limit=limit
	)
	return [OutboxDeliveryResponse.model_validate(delivery) for delivery in deliveries]
