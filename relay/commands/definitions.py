from datetime import datetime
from typing import ClassVar, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from relay.commands.base import ActionCommand
from relay.models.main_record import WeightUnit


class UserRegisteredCommand(ActionCommand):
	command_type: ClassVar[str] = "user.registered"

	user_id: UUID
	user_name: str
	recipient_email: str = ""
	culture_name: str = "en-US"


class InvitationCreatedCommand(ActionCommand):
	command_type: ClassVar[str] = "trainer.invitation.created"

	invitation_id: UUID
	invitation_code: str
	expires_at: datetime
	trainer_name: str
	recipient_email: str = ""
	culture_name: str = "en-US"


class TrainingExerciseSummary(BaseModel):
	model_config = ConfigDict(frozen=True)

	exercise_id: str
	exercise_name: str = ""
	series: int = 0
	reps: int = 0
	weight: float = 0.0
	unit: WeightUnit = WeightUnit.KILOGRAMS


class TrainingCompletedCommand(ActionCommand):
	command_type: ClassVar[str] = "training.completed"

	user_id: UUID
	training_id: UUID
	recipient_email: str = ""
	culture_name: str = "en-US"
	plan_day_name: str = ""
	training_date: datetime
	created_at: Optional[datetime] = None
	exercises: List[TrainingExerciseSummary] = Field(default_factory=list)
