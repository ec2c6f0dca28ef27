import logging
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from relay.core.exceptions import DeliveryHandlerNotRegisteredError, RegistryFrozenError
from relay.services.outbox_events import OutboxEventDefinition

logger = logging.getLogger(__name__)


class OutboxDeliveryHandler:
	"""Consumer of one outbox event type. ``handler_name`` is persisted on deliveries."""

	event_definition: OutboxEventDefinition
	handler_name: str

	@property
	def event_type(self) -> str:
		return self.event_definition.event_type

	async def handle(self, event_id: UUID, correlation_id: UUID, payload_json: str):
		raise NotImplementedError


class DeliveryHandlerRegistry:
	def __init__(self, handlers: Optional[List[OutboxDeliveryHandler]] = None):
		self._handlers: Dict[str, OutboxDeliveryHandler] = {}
		self._frozen = False
		for handler in handlers or ():
			self.register(handler)

	def register(self, handler: OutboxDeliveryHandler):
		if self._frozen:
			raise RegistryFrozenError(f"Cannot register outbox handler {handler.handler_name} after startup")
		if not handler.handler_name or not handler.handler_name.strip():
			raise ValueError("Outbox handler name is required")
		if handler.handler_name in self._handlers:
			raise ValueError(f"Outbox handler {handler.handler_name} is already registered")
		self._handlers[handler.handler_name] = handler
		logger.debug(f"Registered outbox handler {handler.handler_name} for {handler.event_type}")

	def for_event_type(self, event_type: str) -> Tuple[OutboxDeliveryHandler, ...]:
		return tuple(h for h in self._handlers.values() if h.event_type == event_type)

	def get(self, handler_name: str) -> OutboxDeliveryHandler:
		try:
			return self._handlers[handler_name]
		except KeyError:
			raise DeliveryHandlerNotRegisteredError(handler_name) from None

	def freeze(self):
		self._frozen = True

	def __len__(self) -> int:
		return len(self._handlers)
