"""Process-wide wiring: registries are filled here once and frozen."""
from functools import lru_cache
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relay.actions.email_actions import (
	SendInvitationEmailHandler,
	SendRegistrationEmailHandler,
	TrainingCompletedEmailHandler,
)
from relay.actions.main_records import UpdateTrainingMainRecordsHandler
from relay.actions.outbox_email import EmailNotificationOutboxDeliveryHandler
from relay.commands.definitions import InvitationCreatedCommand, TrainingCompletedCommand, UserRegisteredCommand
from relay.database import AsyncSessionLocal
from relay.notifications.composer import EmailTemplateComposer
from relay.notifications.email_job import EmailJobService
from relay.notifications.sender import build_email_sender
from relay.services.command_dispatcher import CommandDispatcher
from relay.services.handler_registry import HandlerRegistry
from relay.services.orchestrator import BackgroundOrchestrator
from relay.services.outbox_delivery_processor import OutboxDeliveryProcessor
from relay.services.outbox_dispatcher import OutboxDispatcher
from relay.services.outbox_handlers import DeliveryHandlerRegistry
from relay.services.scheduling import JobScheduler
from relay.workers.schedulers import (
	CeleryActionMessageScheduler,
	CeleryEmailJobScheduler,
	CeleryOutboxDeliveryScheduler,
)


def build_handler_registry() -> HandlerRegistry:
	registry = HandlerRegistry()
	registry.register(UserRegisteredCommand, SendRegistrationEmailHandler)
	registry.register(InvitationCreatedCommand, SendInvitationEmailHandler)
	registry.register(TrainingCompletedCommand, TrainingCompletedEmailHandler)
	registry.register(TrainingCompletedCommand, UpdateTrainingMainRecordsHandler)
	registry.freeze()
	return registry


def build_delivery_handlers(email_jobs: JobScheduler) -> DeliveryHandlerRegistry:
	handlers = DeliveryHandlerRegistry([
		EmailNotificationOutboxDeliveryHandler(email_jobs),
	])
	handlers.freeze()
	return handlers


@lru_cache()
def get_handler_registry() -> HandlerRegistry:
	return build_handler_registry()


@lru_cache()
def get_delivery_handlers() -> DeliveryHandlerRegistry:
	return build_delivery_handlers(CeleryEmailJobScheduler())


@lru_cache()
def get_email_composer() -> EmailTemplateComposer:
	return EmailTemplateComposer()


def get_command_dispatcher(
		session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
		scheduler: Optional[JobScheduler] = None,
) -> CommandDispatcher:
	return CommandDispatcher(
		session_factory,
		get_handler_registry(),
		scheduler or CeleryActionMessageScheduler(),
	)


def get_orchestrator(session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal) -> BackgroundOrchestrator:
	return BackgroundOrchestrator(session_factory, get_handler_registry())


def get_outbox_dispatcher(session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal) -> OutboxDispatcher:
	return OutboxDispatcher(session_factory, get_delivery_handlers(), CeleryOutboxDeliveryScheduler())


def get_delivery_processor(
		session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
) -> OutboxDeliveryProcessor:
	return OutboxDeliveryProcessor(session_factory, get_delivery_handlers())


def get_email_job_service(session: AsyncSession) -> EmailJobService:
	return EmailJobService(session, get_email_composer(), build_email_sender())
