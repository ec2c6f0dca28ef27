from datetime import datetime
from typing import Callable, Protocol
from uuid import UUID

from relay.models.base import utcnow

Clock = Callable[[], datetime]

__all__ = ["Clock", "JobScheduler", "utcnow"]


class JobScheduler(Protocol):
	"""Hands a durable id to the job runner. Nothing else crosses this boundary."""

	def enqueue(self, durable_id: UUID) -> None:
		...
