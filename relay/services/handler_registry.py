"""Static command -> handler registry.

Handlers are looked up by the exact command class. A subclass of a command
is a different command and gets none of its parent's handlers.
"""
import logging
from typing import Dict, List, Tuple, Type

from relay.commands.base import ActionCommand, CommandTypeRegistry
from relay.core.exceptions import RegistryFrozenError

logger = logging.getLogger(__name__)


def handler_name(handler_cls: type) -> str:
	return f"{handler_cls.__module__}.{handler_cls.__qualname__}"


class HandlerRegistry:
	"""Populated at startup, immutable for the process lifetime after freeze()"""

	def __init__(self, command_types: CommandTypeRegistry = None):
		self.command_types = command_types or CommandTypeRegistry()
		self._handlers: Dict[Type[ActionCommand], List[type]] = {}
		self._frozen = False

	def register(self, command_cls: Type[ActionCommand], handler_cls: type):
		if self._frozen:
			raise RegistryFrozenError(
				f"Cannot register {handler_name(handler_cls)} after the registry was frozen"
			)
		if not callable(getattr(handler_cls, "execute", None)):
			raise TypeError(f"{handler_name(handler_cls)} does not define execute()")

		self.command_types.register(command_cls)
		handlers = self._handlers.setdefault(command_cls, [])
		if handler_cls in handlers:
			return
		handlers.append(handler_cls)
		logger.debug(f"Registered handler {handler_name(handler_cls)} for {command_cls.__qualname__}")

	def handlers_for(self, command_cls: Type[ActionCommand]) -> Tuple[type, ...]:
		return tuple(self._handlers.get(command_cls, ()))

	def freeze(self):
		self._frozen = True
		self.command_types.freeze()

	@property
	def frozen(self) -> bool:
		return self._frozen
