from datetime import datetime
from typing import ClassVar, Dict, List, Type
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from relay.commands.definitions import TrainingExerciseSummary

WELCOME = "user.registration.welcome"
TRAINER_INVITATION = "trainer.invitation.created"
TRAINING_COMPLETED = "training.completed"


class EmailPayload(BaseModel):
	"""Body of a notification message. Stored as JSON on the notification row."""

	notification_type: ClassVar[str]

	model_config = ConfigDict(frozen=True)

	recipient_email: str
	culture_name: str = "en-US"

	@property
	def correlation_id(self) -> UUID:
		raise NotImplementedError


class WelcomeEmailPayload(EmailPayload):
	notification_type: ClassVar[str] = WELCOME

	user_id: UUID
	user_name: str = ""

	@property
	def correlation_id(self) -> UUID:
		return self.user_id


class InvitationEmailPayload(EmailPayload):
	notification_type: ClassVar[str] = TRAINER_INVITATION

	invitation_id: UUID
	invitation_code: str = ""
	expires_at: datetime
	trainer_name: str = ""

	@property
	def correlation_id(self) -> UUID:
		return self.invitation_id


class TrainingCompletedEmailPayload(EmailPayload):
	notification_type: ClassVar[str] = TRAINING_COMPLETED

	user_id: UUID
	training_id: UUID
	plan_day_name: str = ""
	training_date: datetime
	exercises: List[TrainingExerciseSummary] = Field(default_factory=list)

	@property
	def correlation_id(self) -> UUID:
		return self.training_id


PAYLOAD_TYPES: Dict[str, Type[EmailPayload]] = {
	WELCOME: WelcomeEmailPayload,
	TRAINER_INVITATION: InvitationEmailPayload,
	TRAINING_COMPLETED: TrainingCompletedEmailPayload,
}
