from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select

from relay.actions.email_actions import SendInvitationEmailHandler, SendRegistrationEmailHandler
from relay.actions.main_records import UpdateTrainingMainRecordsHandler
from relay.commands.definitions import (
	InvitationCreatedCommand,
	TrainingCompletedCommand,
	TrainingExerciseSummary,
	UserRegisteredCommand,
)
from relay.core.container import build_delivery_handlers, build_handler_registry
from relay.models.command_envelope import ActionExecutionStatus
from relay.models.main_record import MainRecord, WeightUnit
from relay.models.notification import NotificationMessage, NotificationStatus
from relay.models.outbox import OutboxDeliveryStatus
from relay.notifications.composer import EmailTemplateComposer
from relay.notifications.email_job import EmailJobService
from relay.notifications.payloads import TRAINER_INVITATION, TRAINING_COMPLETED, WELCOME
from relay.notifications.sender import DummyEmailSender
from relay.services.command_dispatcher import CommandDispatcher, EnqueueOutcome
from relay.services.execution_scope import ExecutionScopeProvider
from relay.services.main_record_service import MainRecordService, compare_weights, to_kilograms
from relay.services.orchestrator import BackgroundOrchestrator
from relay.services.outbox_delivery_processor import OutboxDeliveryProcessor
from relay.services.outbox_dispatcher import OutboxDispatcher

from conftest import RecordingScheduler


async def run_handler(session_factory, handler_cls, command):
	async with ExecutionScopeProvider(session_factory).open() as scope:
		await handler_cls(scope).execute(command)


async def notifications(session_factory):
	async with session_factory() as db:
		return list((await db.execute(select(NotificationMessage))).scalars().all())


def exercise(exercise_id, weight, unit=WeightUnit.KILOGRAMS, series=1) -> TrainingExerciseSummary:
	return TrainingExerciseSummary(
		exercise_id=str(exercise_id),
		exercise_name="Lift",
		series=series,
		reps=5,
		weight=weight,
		unit=unit,
	)


def test_weight_conversion():
	assert to_kilograms(10, WeightUnit.KILOGRAMS) == 10
	assert to_kilograms(100, WeightUnit.POUNDS) == pytest.approx(45.359237)
	assert compare_weights(100, WeightUnit.KILOGRAMS, 220, WeightUnit.POUNDS) > 0
	assert compare_weights(100, WeightUnit.KILOGRAMS, 221, WeightUnit.POUNDS) < 0
	assert compare_weights(50, WeightUnit.KILOGRAMS, 50, WeightUnit.KILOGRAMS) == 0
	with pytest.raises(ValueError):
		to_kilograms(1, WeightUnit.UNKNOWN)


@pytest.mark.asyncio
async def test_registration_email_is_scheduled(session_factory):
	command = UserRegisteredCommand(user_id=uuid4(), user_name="Anna", recipient_email="anna@example.com")

	await run_handler(session_factory, SendRegistrationEmailHandler, command)

	[notification] = await notifications(session_factory)
	assert notification.type == WELCOME
	assert notification.correlation_id == command.user_id


@pytest.mark.asyncio
async def test_invitation_email_is_scheduled(session_factory):
	command = InvitationCreatedCommand(
		invitation_id=uuid4(),
		invitation_code="CODE",
		expires_at=datetime.now(timezone.utc) + timedelta(days=3),
		trainer_name="Coach",
		recipient_email="trainee@example.com",
		culture_name="pl-PL",
	)

	await run_handler(session_factory, SendInvitationEmailHandler, command)

	[notification] = await notifications(session_factory)
	assert notification.type == TRAINER_INVITATION
	assert notification.correlation_id == command.invitation_id


@pytest.mark.asyncio
async def test_email_is_skipped_without_recipient(session_factory):
	command = UserRegisteredCommand(user_id=uuid4(), user_name="Anna", recipient_email="  ")

	await run_handler(session_factory, SendRegistrationEmailHandler, command)

	assert await notifications(session_factory) == []


@pytest.mark.asyncio
async def test_main_records_keep_only_improvements(session_factory):
	user_id = uuid4()
	squat, bench, row, deadlift = uuid4(), uuid4(), uuid4(), uuid4()
	previous = datetime(2026, 1, 1, tzinfo=timezone.utc)

	async with session_factory() as db:
		records = MainRecordService(db)
		records.add(user_id, squat, 100, WeightUnit.KILOGRAMS, previous)
		records.add(user_id, deadlift, 200, WeightUnit.KILOGRAMS, previous)
		await db.commit()

	command = TrainingCompletedCommand(
		user_id=user_id,
		training_id=uuid4(),
		training_date=datetime(2026, 2, 1, tzinfo=timezone.utc),
		exercises=[
			exercise(squat, 90),
			exercise(squat, 230, WeightUnit.POUNDS, series=2),
			exercise(bench, 50),
			exercise(bench, 120, WeightUnit.POUNDS, series=2),
			exercise(row, 70, WeightUnit.UNKNOWN),
			exercise(deadlift, 180),
			exercise("not-a-uuid", 500),
		],
	)

	await run_handler(session_factory, UpdateTrainingMainRecordsHandler, command)

	async with session_factory() as db:
		created = (await db.execute(
			select(MainRecord).where(MainRecord.user_id == user_id, MainRecord.achieved_at > previous)
		)).scalars().all()

	assert {(r.exercise_id, r.weight, r.unit) for r in created} == {
		(squat, 230, WeightUnit.POUNDS),
		(bench, 120, WeightUnit.POUNDS),
	}


@pytest.mark.asyncio
async def test_main_records_without_valid_exercises(session_factory):
	command = TrainingCompletedCommand(
		user_id=uuid4(),
		training_id=uuid4(),
		training_date=datetime(2026, 2, 1, tzinfo=timezone.utc),
		exercises=[exercise("bad", 10), exercise(uuid4(), 10, WeightUnit.UNKNOWN)],
	)

	await run_handler(session_factory, UpdateTrainingMainRecordsHandler, command)

	async with session_factory() as db:
		assert (await db.execute(select(MainRecord))).scalars().all() == []


@pytest.mark.asyncio
async def test_command_flows_through_to_sent_email(session_factory, clock, tmp_path):
	"""Dispatch, orchestration, outbox fan-out, delivery and the email job"""
	registry = build_handler_registry()
	email_jobs = RecordingScheduler()
	delivery_handlers = build_delivery_handlers(email_jobs)
	envelope_jobs = RecordingScheduler()
	delivery_jobs = RecordingScheduler()

	command = TrainingCompletedCommand(
		user_id=uuid4(),
		training_id=uuid4(),
		recipient_email="anna@example.com",
		plan_day_name="Leg day",
		training_date=datetime(2026, 2, 1, 17, 0, tzinfo=timezone.utc),
		exercises=[exercise(uuid4(), 120)],
	)

	dispatcher = CommandDispatcher(session_factory, registry, envelope_jobs, clock=clock)
	assert await dispatcher.enqueue(command) == EnqueueOutcome.ENQUEUED
	assert await dispatcher.enqueue(command) == EnqueueOutcome.DUPLICATE

	orchestrator = BackgroundOrchestrator(session_factory, registry, clock=clock, max_parallelism=1)
	assert await orchestrator.orchestrate(envelope_jobs.ids[0]) == ActionExecutionStatus.COMPLETED

	report = await OutboxDispatcher(session_factory, delivery_handlers, delivery_jobs, clock=clock).dispatch_pending()
	assert report.deliveries_created == 1

	processor = OutboxDeliveryProcessor(session_factory, delivery_handlers, clock=clock)
	assert await processor.process(delivery_jobs.ids[0]) == OutboxDeliveryStatus.SUCCEEDED

	[notification] = await notifications(session_factory)
	assert notification.type == TRAINING_COMPLETED
	assert email_jobs.ids == [notification.id]

	async with session_factory() as db:
		job = EmailJobService(db, EmailTemplateComposer(), DummyEmailSender(str(tmp_path)), clock=clock)
		assert await job.process(email_jobs.ids[0]) == NotificationStatus.SENT

	[sent] = list(tmp_path.glob("*.email.txt"))
	assert "Subject: Training completed: Leg day" in sent.read_text(encoding="utf-8")

	async with session_factory() as db:
		assert len((await db.execute(select(MainRecord))).scalars().all()) == 1
