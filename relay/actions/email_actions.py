"""Handlers that turn business commands into scheduled email notifications"""
import logging

from relay.actions.base import BackgroundAction
from relay.commands.definitions import InvitationCreatedCommand, TrainingCompletedCommand, UserRegisteredCommand
from relay.notifications.payloads import InvitationEmailPayload, TrainingCompletedEmailPayload, WelcomeEmailPayload

logger = logging.getLogger(__name__)


class SendRegistrationEmailHandler(BackgroundAction):
	async def execute(self, command: UserRegisteredCommand):
		if not command.recipient_email.strip():
			logger.warning(f"Welcome email skipped for user {command.user_id} - no recipient email provided")
			return

		await self.scope.email_scheduler.schedule(WelcomeEmailPayload(
			user_id=command.user_id,
			user_name=command.user_name,
			recipient_email=command.recipient_email,
			culture_name=command.culture_name,
		))
		logger.info(f"Welcome email scheduled for user {command.user_id} to {command.recipient_email}")


class SendInvitationEmailHandler(BackgroundAction):
	async def execute(self, command: InvitationCreatedCommand):
		if not command.recipient_email.strip():
			logger.warning(
				f"Invitation email skipped for invitation {command.invitation_id} - no recipient email provided"
			)
			return

		await self.scope.email_scheduler.schedule(InvitationEmailPayload(
			invitation_id=command.invitation_id,
			invitation_code=command.invitation_code,
			expires_at=command.expires_at,
			trainer_name=command.trainer_name,
			recipient_email=command.recipient_email,
			culture_name=command.culture_name,
		))
		logger.info(
			f"Invitation email scheduled for invitation {command.invitation_id} to {command.recipient_email}"
		)


class TrainingCompletedEmailHandler(BackgroundAction):
	async def execute(self, command: TrainingCompletedCommand):
		if not command.recipient_email.strip():
			logger.warning(
				f"Training completed email skipped for training {command.training_id} - no recipient email provided"
			)
			return

		await self.scope.email_scheduler.schedule(TrainingCompletedEmailPayload(
			user_id=command.user_id,
			training_id=command.training_id,
			recipient_email=command.recipient_email,
			culture_name=command.culture_name,
			plan_day_name=command.plan_day_name,
			training_date=command.training_date,
			exercises=command.exercises,
		))
		logger.info(
			f"Training completed email scheduled for training {command.training_id} to {command.recipient_email}"
		)
