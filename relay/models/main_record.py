import enum

from sqlalchemy import Column, Float, DateTime, Uuid, Enum as SQLEnum, Index

from relay.database import Base
from relay.models.base import BaseModel


class WeightUnit(str, enum.Enum):
	KILOGRAMS = "kilograms"
	POUNDS = "pounds"
	UNKNOWN = "unknown"


class MainRecord(Base, BaseModel):
	"""Personal best lift per user and exercise"""
	__tablename__ = "main_records"

	user_id = Column(Uuid(as_uuid=True), nullable=False)
	exercise_id = Column(Uuid(as_uuid=True), nullable=False)
	weight = Column(Float, nullable=False)
	unit = Column(
		SQLEnum(WeightUnit, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
		nullable=False,
	)
	achieved_at = Column(DateTime(timezone=True), nullable=False)

	__table_args__ = (
		Index("ix_main_records_user_exercise", "user_id", "exercise_id"),
	)
