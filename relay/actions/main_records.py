import logging
from typing import Dict, Tuple
from uuid import UUID

from relay.actions.base import BackgroundAction
from relay.commands.definitions import TrainingCompletedCommand
from relay.models.main_record import WeightUnit
from relay.services.main_record_service import compare_weights

logger = logging.getLogger(__name__)


class UpdateTrainingMainRecordsHandler(BackgroundAction):
	"""Adds a main record for every exercise where the training beat the user's best"""

	async def execute(self, command: TrainingCompletedCommand):
		best_by_exercise: Dict[UUID, Tuple[float, WeightUnit]] = {}
		for exercise in command.exercises:
			try:
				exercise_id = UUID(exercise.exercise_id)
			except ValueError:
				continue
			if exercise.unit == WeightUnit.UNKNOWN:
				continue

			current = best_by_exercise.get(exercise_id)
			if current is None or compare_weights(exercise.weight, exercise.unit, *current) > 0:
				best_by_exercise[exercise_id] = (exercise.weight, exercise.unit)

		if not best_by_exercise:
			logger.info(
				f"No valid exercises with weights found for training {command.training_id} - "
				f"skipping main record updates"
			)
			return

		records = self.scope.main_records
		existing = await records.get_best_by_exercise(command.user_id, best_by_exercise.keys())

		created = 0
		for exercise_id, (weight, unit) in best_by_exercise.items():
			current = existing.get(exercise_id)
			if current is not None and compare_weights(weight, unit, current.weight, current.unit) <= 0:
				continue
			records.add(command.user_id, exercise_id, weight, unit, command.training_date)
			created += 1

		if created:
			await self.scope.session.commit()

		logger.info(
			f"Main records synchronized for training {command.training_id}: {created} new personal records created"
		)
