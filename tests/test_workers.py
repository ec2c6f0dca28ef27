import asyncio
import os
import signal
from datetime import timedelta
from types import SimpleNamespace
from typing import ClassVar
from uuid import UUID, uuid4

import pytest
from sqlalchemy import select

from relay.actions.base import BackgroundAction
from relay.commands.base import ActionCommand
from relay.models.command_envelope import ActionExecutionLog, ActionExecutionStatus, CommandEnvelope
from relay.models.outbox import OutboxDelivery, OutboxDeliveryStatus, OutboxMessage, OutboxMessageStatus
from relay.services.command_dispatcher import CommandDispatcher, EnqueueOutcome
from relay.services.envelope_service import CommandEnvelopeService
from relay.services.handler_registry import HandlerRegistry
from relay.services.orchestrator import BackgroundOrchestrator
from relay.services.outbox_dispatcher import OutboxDispatchReport
from relay.services.outbox_service import OutboxService
from relay.services.policies import compute_correlation_key
from relay.workers import schedulers, sync_worker
from relay.workers.scheduled_tasks import cleanup_history, retry_due_envelopes
from relay.workers.sync_worker import OutboxPollingWorker


class SweepRequested(ActionCommand):
	command_type: ClassVar[str] = "tests.sweep.requested"

	value: int


class SweepHandler(BackgroundAction):
	async def execute(self, command: SweepRequested):
		pass


async def store_envelope(session_factory, created_at, **values) -> UUID:
	payload = f'{{"n":"{uuid4()}"}}'
	async with session_factory() as db:
		envelope, _ = await CommandEnvelopeService(db).add_or_get_existing(
			correlation_key=compute_correlation_key("tests.sweep", payload),
			command_type="tests.sweep",
			payload=payload,
			now=created_at,
		)
		for key, value in values.items():
			setattr(envelope, key, value)
		await db.commit()
		return envelope.id


async def store_message(session_factory, status, processed_at=None, delivery_status=None) -> UUID:
	async with session_factory() as db:
		outbox = OutboxService(db)
		message = await outbox.add_message("tests.event", "{}", uuid4())
		message.status = status
		message.processed_at = processed_at
		if delivery_status is not None:
			db.add(OutboxDelivery(event_id=message.id, handler_name="tests.handler", status=delivery_status))
		await db.commit()
		return message.id


@pytest.mark.asyncio
async def test_retry_sweep_picks_due_and_abandoned_envelopes(session_factory, scheduler, clock):
	now = clock.now
	due = await store_envelope(
		session_factory, now - timedelta(minutes=5),
		status=ActionExecutionStatus.FAILED, attempts=1, next_attempt_at=now - timedelta(seconds=1),
	)
	await store_envelope(
		session_factory, now - timedelta(minutes=5),
		status=ActionExecutionStatus.FAILED, attempts=1, next_attempt_at=now + timedelta(minutes=1),
	)
	stale = await store_envelope(
		session_factory, now - timedelta(hours=2),
		status=ActionExecutionStatus.PROCESSING, last_attempt_at=now - timedelta(hours=1),
	)
	await store_envelope(
		session_factory, now - timedelta(minutes=1),
		status=ActionExecutionStatus.PROCESSING, last_attempt_at=now - timedelta(minutes=1),
	)
	lost = await store_envelope(session_factory, now - timedelta(hours=1))
	await store_envelope(session_factory, now)
	await store_envelope(
		session_factory, now - timedelta(hours=1),
		status=ActionExecutionStatus.DEAD_LETTERED, attempts=3, next_attempt_at=None,
	)

	result = await retry_due_envelopes(session_factory, scheduler=scheduler, clock=clock)

	assert result == {"enqueued": 3}
	assert set(scheduler.ids) == {due, stale, lost}


@pytest.mark.asyncio
async def test_cleanup_purges_logs_but_keeps_envelopes(session_factory, clock):
	now = clock.now
	old = now - timedelta(days=45)

	completed = await store_envelope(
		session_factory, old, status=ActionExecutionStatus.COMPLETED, completed_at=old,
	)
	recent = await store_envelope(
		session_factory, now, status=ActionExecutionStatus.COMPLETED, completed_at=now,
	)
	dead = await store_envelope(
		session_factory, old, status=ActionExecutionStatus.DEAD_LETTERED, attempts=3,
	)
	async with session_factory() as db:
		for envelope_id in (completed, recent, dead):
			db.add(ActionExecutionLog(
				envelope_id=envelope_id, attempt_number=1, sequence=0, handler_name="tests.handler", succeeded=True,
			))
		await db.commit()

	delivered = await store_message(
		session_factory, OutboxMessageStatus.PROCESSED, old, delivery_status=OutboxDeliveryStatus.SUCCEEDED
	)
	undelivered = await store_message(
		session_factory, OutboxMessageStatus.PROCESSED, old, delivery_status=OutboxDeliveryStatus.FAILED
	)
	pending = await store_message(session_factory, OutboxMessageStatus.PENDING)

	result = await cleanup_history(session_factory, clock=clock, retention_days=30)

	assert result == {"execution_logs": 1, "outbox_messages": 1}

	async with session_factory() as db:
		envelope_ids = set((await db.execute(select(CommandEnvelope.id))).scalars().all())
		message_ids = set((await db.execute(select(OutboxMessage.id))).scalars().all())
		logged = set((await db.execute(select(ActionExecutionLog.envelope_id))).scalars().all())

	assert envelope_ids == {completed, recent, dead}
	assert message_ids == {undelivered, pending}
	assert delivered not in message_ids
	assert logged == {recent, dead}


@pytest.mark.asyncio
async def test_enqueue_after_cleanup_is_still_a_duplicate(session_factory, scheduler, clock):
	registry = HandlerRegistry()
	registry.register(SweepRequested, SweepHandler)
	registry.freeze()
	dispatcher = CommandDispatcher(session_factory, registry, scheduler, clock=clock)

	assert await dispatcher.enqueue(SweepRequested(value=2)) == EnqueueOutcome.ENQUEUED
	orchestrator = BackgroundOrchestrator(session_factory, registry, clock=clock)
	assert await orchestrator.orchestrate(scheduler.ids[0]) == ActionExecutionStatus.COMPLETED

	clock.advance(timedelta(days=31))
	await cleanup_history(session_factory, clock=clock, retention_days=30)

	assert await dispatcher.enqueue(SweepRequested(value=2)) == EnqueueOutcome.DUPLICATE
	assert len(scheduler.ids) == 1
	async with session_factory() as db:
		assert len((await db.execute(select(CommandEnvelope))).scalars().all()) == 1


def test_celery_scheduler_sends_only_the_id(monkeypatch):
	sent = []

	def send_task(name, args):
		sent.append((name, args))
		return SimpleNamespace(id="task-1")

	monkeypatch.setattr(schedulers.celery_app, "send_task", send_task)
	envelope_id = uuid4()

	schedulers.CeleryActionMessageScheduler().enqueue(envelope_id)
	schedulers.CeleryEmailJobScheduler().enqueue(envelope_id)

	assert sent == [
		(schedulers.ORCHESTRATE_ENVELOPE_TASK, [str(envelope_id)]),
		(schedulers.SEND_EMAIL_NOTIFICATION_TASK, [str(envelope_id)]),
	]


def test_celery_scheduler_rejects_empty_id(monkeypatch):
	monkeypatch.setattr(schedulers.celery_app, "send_task", lambda name, args: pytest.fail("should not send"))

	with pytest.raises(ValueError):
		schedulers.CeleryOutboxDeliveryScheduler().enqueue(UUID(int=0))
	with pytest.raises(ValueError):
		schedulers.CeleryOutboxDeliveryScheduler().enqueue(None)


class CountingDispatcher:
	def __init__(self, fail_first: bool = False):
		self.calls = 0
		self.fail_first = fail_first

	async def dispatch_pending(self) -> OutboxDispatchReport:
		self.calls += 1
		if self.fail_first and self.calls == 1:
			raise RuntimeError("database unavailable")
		return OutboxDispatchReport(processed=1)


@pytest.mark.asyncio
async def test_polling_worker_runs_until_stopped():
	dispatcher = CountingDispatcher(fail_first=True)
	worker = OutboxPollingWorker(dispatcher, interval_seconds=0.01)

	task = asyncio.create_task(worker.start())
	while dispatcher.calls < 3:
		await asyncio.sleep(0.01)
	await worker.stop()
	await asyncio.wait_for(task, timeout=1)

	assert not worker.running
	assert dispatcher.calls >= 3


@pytest.mark.asyncio
async def test_polling_worker_run_once():
	worker = OutboxPollingWorker(CountingDispatcher())
	report = await worker.run_once()
	assert report.processed == 1


@pytest.mark.asyncio
async def test_outbox_poller_stops_on_sigterm(monkeypatch):
	closed = []

	async def close_db():
		closed.append(True)

	monkeypatch.setattr(sync_worker, "close_db", close_db)
	dispatcher = CountingDispatcher()
	worker = OutboxPollingWorker(dispatcher, interval_seconds=0.01)

	task = asyncio.create_task(sync_worker.run_outbox_poller(worker))
	while dispatcher.calls < 1:
		await asyncio.sleep(0.01)
	os.kill(os.getpid(), signal.SIGTERM)
	await asyncio.wait_for(task, timeout=1)

	assert not worker.running
	assert closed == [True]
