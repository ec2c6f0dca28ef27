import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from relay.actions.outbox_email import EmailNotificationOutboxDeliveryHandler
from relay.core.exceptions import NotificationDeliveryError, TemplateNotFoundError
from relay.models.notification import NotificationMessage, NotificationStatus
from relay.models.outbox import OutboxMessage
from relay.notifications.composer import (
	EmailMessage,
	EmailTemplateComposer,
	EmailTemplateLoader,
	format_weight,
	sanitize_value,
)
from relay.notifications.email_job import SENDER_DISABLED_ERROR, EmailJobService
from relay.notifications.payloads import (
	TRAINER_INVITATION,
	WELCOME,
	InvitationEmailPayload,
	TrainingCompletedEmailPayload,
	WelcomeEmailPayload,
)
from relay.notifications.scheduler import EmailScheduler
from relay.notifications.sender import DummyEmailSender, SmtpEmailSender, build_email_sender
from relay.commands.definitions import TrainingExerciseSummary
from relay.config import settings
from relay.services.outbox_events import EMAIL_NOTIFICATION_SCHEDULED, EmailNotificationScheduledEvent


class ExplodingSender:
	async def send(self, message: EmailMessage) -> bool:
		raise ConnectionError("smtp down")


def welcome_payload(**overrides) -> WelcomeEmailPayload:
	values = {
		"user_id": uuid4(),
		"user_name": "Anna",
		"recipient_email": "anna@example.com",
	}
	values.update(overrides)
	return WelcomeEmailPayload(**values)


async def count(session_factory, model) -> int:
	async with session_factory() as db:
		return (await db.execute(select(func.count(model.id)))).scalar_one()


async def schedule(session_factory, payload, enabled=True):
	async with session_factory() as db:
		return await EmailScheduler(db, enabled=enabled).schedule(payload)


async def set_notification(session_factory, notification_id, **values):
	async with session_factory() as db:
		notification = await db.get(NotificationMessage, notification_id)
		for key, value in values.items():
			setattr(notification, key, value)
		await db.commit()


async def get_notification(session_factory, notification_id) -> NotificationMessage:
	async with session_factory() as db:
		return await db.get(NotificationMessage, notification_id)


# Scheduler

@pytest.mark.asyncio
async def test_schedule_creates_notification_and_outbox_event(session_factory):
	payload = welcome_payload()

	notification_id = await schedule(session_factory, payload)

	notification = await get_notification(session_factory, notification_id)
	assert notification.type == WELCOME
	assert notification.correlation_id == payload.user_id
	assert notification.recipient == "anna@example.com"
	assert notification.status == NotificationStatus.PENDING
	assert WelcomeEmailPayload.model_validate_json(notification.payload) == payload

	async with session_factory() as db:
		message = (await db.execute(select(OutboxMessage))).scalar_one()
	assert message.event_type == EMAIL_NOTIFICATION_SCHEDULED.event_type
	assert message.correlation_id == payload.user_id
	event = EMAIL_NOTIFICATION_SCHEDULED.deserialize(message.payload)
	assert event.notification_id == notification_id
	assert event.notification_type == WELCOME


@pytest.mark.asyncio
async def test_schedule_is_idempotent(session_factory):
	payload = welcome_payload()

	first = await schedule(session_factory, payload)
	second = await schedule(session_factory, payload)

	assert first == second
	assert await count(session_factory, NotificationMessage) == 1
	assert await count(session_factory, OutboxMessage) == 1


class LateLookupScheduler(EmailScheduler):
	"""Misses the first lookup, as if another worker inserted right after it"""

	def __init__(self, *args, **kwargs):
		super().__init__(*args, **kwargs)
		self.lookups = 0

	async def find_by_correlation(self, notification_type, correlation_id, recipient):
		self.lookups += 1
		if self.lookups == 1:
			return None
		return await super().find_by_correlation(notification_type, correlation_id, recipient)


@pytest.mark.asyncio
async def test_concurrent_schedules_share_one_notification(session_factory):
	payload = welcome_payload()

	first, second = await asyncio.gather(schedule(session_factory, payload), schedule(session_factory, payload))

	assert first == second
	assert await count(session_factory, NotificationMessage) == 1
	assert await count(session_factory, OutboxMessage) == 1


@pytest.mark.asyncio
async def test_insert_conflict_reuses_existing_notification(session_factory):
	payload = welcome_payload()
	existing_id = await schedule(session_factory, payload)

	async with session_factory() as db:
		scheduler = LateLookupScheduler(db, enabled=True)
		assert await scheduler.schedule(payload) == existing_id
		assert scheduler.lookups == 2

	assert await count(session_factory, NotificationMessage) == 1
	assert await count(session_factory, OutboxMessage) == 1


@pytest.mark.asyncio
async def test_same_correlation_for_another_recipient_is_separate(session_factory):
	payload = welcome_payload()

	first = await schedule(session_factory, payload)
	second = await schedule(session_factory, payload.model_copy(update={"recipient_email": "other@example.com"}))

	assert first != second
	assert await count(session_factory, NotificationMessage) == 2


@pytest.mark.asyncio
async def test_failed_notification_is_republished(session_factory):
	payload = welcome_payload()
	notification_id = await schedule(session_factory, payload)
	await set_notification(session_factory, notification_id, status=NotificationStatus.FAILED, attempts=2)

	assert await schedule(session_factory, payload) == notification_id
	assert await count(session_factory, NotificationMessage) == 1
	assert await count(session_factory, OutboxMessage) == 2


@pytest.mark.asyncio
async def test_failed_notification_past_requeue_limit_is_left_alone(session_factory):
	payload = welcome_payload()
	notification_id = await schedule(session_factory, payload)
	await set_notification(session_factory, notification_id, status=NotificationStatus.FAILED, attempts=5)

	assert await schedule(session_factory, payload) == notification_id
	assert await count(session_factory, OutboxMessage) == 1


@pytest.mark.asyncio
async def test_disabled_scheduler_stores_nothing(session_factory):
	assert await schedule(session_factory, welcome_payload(), enabled=False) is None
	assert await count(session_factory, NotificationMessage) == 0
	assert await count(session_factory, OutboxMessage) == 0


# Email job

@pytest.mark.asyncio
async def test_email_job_sends_notification(session_factory, clock, tmp_path):
	notification_id = await schedule(session_factory, welcome_payload())
	sender = DummyEmailSender(str(tmp_path / "outbox"))

	async with session_factory() as db:
		status = await EmailJobService(db, EmailTemplateComposer(), sender, clock=clock).process(notification_id)

	assert status == NotificationStatus.SENT
	notification = await get_notification(session_factory, notification_id)
	assert notification.attempts == 1
	assert notification.sent_at is not None
	assert notification.last_error is None

	files = list((tmp_path / "outbox").glob("*.email.txt"))
	assert len(files) == 1
	content = files[0].read_text(encoding="utf-8")
	assert "To: anna@example.com" in content
	assert "Subject: Welcome to Lgym, Anna!" in content


@pytest.mark.asyncio
async def test_email_job_skips_sent_notification(session_factory, clock, tmp_path):
	notification_id = await schedule(session_factory, welcome_payload())
	sender = DummyEmailSender(str(tmp_path))

	for _ in range(2):
		async with session_factory() as db:
			assert await EmailJobService(db, EmailTemplateComposer(), sender, clock=clock).process(
				notification_id
			) == NotificationStatus.SENT

	notification = await get_notification(session_factory, notification_id)
	assert notification.attempts == 1
	assert len(list(tmp_path.glob("*.email.txt"))) == 1


@pytest.mark.asyncio
async def test_email_job_with_disabled_sender(session_factory, clock, tmp_path):
	notification_id = await schedule(session_factory, welcome_payload())
	sender = DummyEmailSender(str(tmp_path), enabled=False)

	async with session_factory() as db:
		status = await EmailJobService(db, EmailTemplateComposer(), sender, clock=clock).process(notification_id)

	assert status == NotificationStatus.FAILED
	notification = await get_notification(session_factory, notification_id)
	assert notification.last_error == SENDER_DISABLED_ERROR
	assert notification.attempts == 1


@pytest.mark.asyncio
async def test_email_job_send_error(session_factory, clock):
	notification_id = await schedule(session_factory, welcome_payload())

	async with session_factory() as db:
		job = EmailJobService(db, EmailTemplateComposer(), ExplodingSender(), clock=clock)
		with pytest.raises(NotificationDeliveryError):
			await job.process(notification_id)

	notification = await get_notification(session_factory, notification_id)
	assert notification.status == NotificationStatus.FAILED
	assert notification.last_error == "ConnectionError: smtp down"


@pytest.mark.asyncio
async def test_email_job_compose_error(session_factory, clock, tmp_path):
	notification_id = await schedule(session_factory, welcome_payload())
	await set_notification(session_factory, notification_id, type="tests.unknown.type")

	async with session_factory() as db:
		job = EmailJobService(db, EmailTemplateComposer(), DummyEmailSender(str(tmp_path)), clock=clock)
		with pytest.raises(NotificationDeliveryError):
			await job.process(notification_id)

	notification = await get_notification(session_factory, notification_id)
	assert notification.status == NotificationStatus.FAILED
	assert notification.last_error.startswith("LookupError")


@pytest.mark.asyncio
async def test_email_job_missing_notification(session_factory, clock, tmp_path):
	async with session_factory() as db:
		job = EmailJobService(db, EmailTemplateComposer(), DummyEmailSender(str(tmp_path)), clock=clock)
		assert await job.process(uuid4()) is None


# Templates

def test_loader_prefers_full_culture_then_language():
	loader = EmailTemplateLoader(default_culture="en-US")

	subject, body = loader.load("Welcome", "pl-PL")
	assert subject == "Witaj w Lgym, {{UserName}}!"

	subject, _ = loader.load("Welcome", "de-DE")
	assert subject == "Welcome to Lgym, {{UserName}}!"


def test_loader_missing_template():
	with pytest.raises(TemplateNotFoundError):
		EmailTemplateLoader().load("Farewell", "en-US")


def test_loader_rejects_malformed_template(tmp_path):
	(tmp_path / "Broken").mkdir()
	(tmp_path / "Broken" / "en-us.email").write_text("no separator here", encoding="utf-8")
	(tmp_path / "NoSubject").mkdir()
	(tmp_path / "NoSubject" / "en-us.email").write_text("Title: x\n---\nbody", encoding="utf-8")

	loader = EmailTemplateLoader(root=str(tmp_path), default_culture="en-US")
	with pytest.raises(ValueError):
		loader.load("Broken", "en-US")
	with pytest.raises(ValueError):
		loader.load("NoSubject", "en-US")


def test_compose_welcome_sanitizes_values():
	composer = EmailTemplateComposer()
	payload = welcome_payload(user_name="Anna\r\nBcc: someone@example.com")

	message = composer.compose(WELCOME, payload.model_dump_json())

	assert message.to == "anna@example.com"
	assert "\n" not in message.subject
	assert message.subject == "Welcome to Lgym, Anna  Bcc: someone@example.com!"


def test_compose_trainer_invitation():
	composer = EmailTemplateComposer(invitation_base_url="https://app.example.com/invitations/")
	invitation_id = uuid4()
	payload = InvitationEmailPayload(
		invitation_id=invitation_id,
		invitation_code="XYZ789",
		expires_at=datetime(2026, 1, 2, 13, 30, tzinfo=timezone(timedelta(hours=2))),
		trainer_name="Coach Kim",
		recipient_email="trainee@example.com",
	)

	message = composer.compose(TRAINER_INVITATION, payload.model_dump_json())

	assert message.subject == "Coach Kim invited you to train together"
	assert f"https://app.example.com/invitations/accept/{invitation_id}" in message.body
	assert f"https://app.example.com/invitations/reject/{invitation_id}" in message.body
	assert "XYZ789" in message.body
	assert "2026-01-02 11:30 UTC" in message.body


def test_compose_training_completed_table():
	composer = EmailTemplateComposer()
	exercise_id = str(uuid4())
	payload = TrainingCompletedEmailPayload(
		user_id=uuid4(),
		training_id=uuid4(),
		recipient_email="anna@example.com",
		plan_day_name="Push day",
		training_date=datetime(2026, 3, 4, 18, 0, tzinfo=timezone.utc),
		exercises=[
			TrainingExerciseSummary(exercise_id=exercise_id, exercise_name="Bench <Press>", series=2, reps=8, weight=80.5),
			TrainingExerciseSummary(exercise_id=exercise_id, exercise_name="Bench <Press>", series=1, reps=10, weight=100.0),
		],
	)

	message = composer.compose_training_completed(payload)

	assert message.is_html
	assert "Bench &lt;Press&gt;" in message.body
	assert message.body.index("Series #1") < message.body.index("Series #2")
	assert "<td>80.5</td>" in message.body
	assert "<td>100</td>" in message.body


def test_compose_rejects_unknown_type_and_bad_payload():
	composer = EmailTemplateComposer()
	with pytest.raises(LookupError):
		composer.compose("tests.unknown", "{}")
	with pytest.raises(ValueError):
		composer.compose(WELCOME, '{"recipient_email": "a@example.com"}')


def test_format_weight_and_sanitize():
	assert format_weight(80.0) == "80"
	assert format_weight(82.25) == "82.25"
	assert format_weight(0) == "0"
	assert sanitize_value(None) == ""
	assert sanitize_value(" a\nb ") == "a b"


def test_build_email_sender():
	assert isinstance(build_email_sender(settings.model_copy(update={"EMAIL_DELIVERY_MODE": "dummy"})), DummyEmailSender)
	assert isinstance(build_email_sender(settings.model_copy(update={"EMAIL_DELIVERY_MODE": "SMTP"})), SmtpEmailSender)
	with pytest.raises(ValueError):
		build_email_sender(settings.model_copy(update={"EMAIL_DELIVERY_MODE": "pigeon"}))


# Outbox delivery handler

@pytest.mark.asyncio
async def test_outbox_handler_enqueues_email_job(scheduler):
	handler = EmailNotificationOutboxDeliveryHandler(scheduler)
	notification_id = uuid4()
	event = EmailNotificationScheduledEvent(
		notification_id=notification_id,
		correlation_id=uuid4(),
		recipient="anna@example.com",
		notification_type=WELCOME,
	)

	await handler.handle(uuid4(), event.correlation_id, EMAIL_NOTIFICATION_SCHEDULED.serialize(event))

	assert scheduler.ids == [notification_id]


@pytest.mark.asyncio
async def test_outbox_handler_rejects_bad_payload(scheduler):
	handler = EmailNotificationOutboxDeliveryHandler(scheduler)

	with pytest.raises(ValueError):
		await handler.handle(uuid4(), uuid4(), '{"unexpected": true}')

	nil_event = EmailNotificationScheduledEvent(
		notification_id="00000000-0000-0000-0000-000000000000",
		correlation_id=uuid4(),
		recipient="anna@example.com",
		notification_type=WELCOME,
	)
	with pytest.raises(ValueError):
		await handler.handle(uuid4(), uuid4(), nil_event.model_dump_json())

	assert scheduler.ids == []
