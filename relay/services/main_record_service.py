from datetime import datetime
from typing import Dict, Iterable, List
from uuid import UUID
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from relay.models.main_record import MainRecord, WeightUnit

logger = logging.getLogger(__name__)

POUNDS_TO_KILOGRAMS = 0.45359237


def to_kilograms(weight: float, unit: WeightUnit) -> float:
	if unit == WeightUnit.KILOGRAMS:
		return weight
	if unit == WeightUnit.POUNDS:
		return weight * POUNDS_TO_KILOGRAMS
	raise ValueError(f"Cannot convert weight in unit '{unit.value}'")


def compare_weights(weight1: float, unit1: WeightUnit, weight2: float, unit2: WeightUnit) -> int:
	"""Positive when the first weight is heavier, negative when lighter, 0 when equal"""
	left = to_kilograms(weight1, unit1)
	right = to_kilograms(weight2, unit2)
	return (left > right) - (left < right)


class MainRecordService:
	def __init__(self, session: AsyncSession):
		self.session = session

	async def get_best_by_exercise(self, user_id: UUID, exercise_ids: Iterable[UUID]) -> Dict[UUID, MainRecord]:
		"""Heaviest comparable record per exercise for the user"""
		result = await self.session.execute(
			select(MainRecord).where(
				MainRecord.user_id == user_id,
				MainRecord.exercise_id.in_(list(exercise_ids)),
				MainRecord.unit != WeightUnit.UNKNOWN,
			)
		)

		best: Dict[UUID, MainRecord] = {}
		for record in result.scalars().all():
			current = best.get(record.exercise_id)
			if current is None or compare_weights(record.weight, record.unit, current.weight, current.unit) > 0:
				best[record.exercise_id] = record
		return best

	async def list_for_user(self, user_id: UUID) -> List[MainRecord]:
		result = await self.session.execute(
			select(MainRecord)
			.where(MainRecord.user_id == user_id)
			.order_by(MainRecord.achieved_at)
		)
		return list(result.scalars().all())

	def add(self, user_id: UUID, exercise_id: UUID, weight: float, unit: WeightUnit, achieved_at: datetime) -> MainRecord:
		record = MainRecord(
			id=uuid.uuid4(),
			user_id=user_id,
			exercise_id=exercise_id,
			weight=weight,
			unit=unit,
			achieved_at=achieved_at,
		)
		self.session.add(record)
		return record
