import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Uuid


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


class BaseModel:
	"""Common primary key and audit columns"""

	id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
	created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
	updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
