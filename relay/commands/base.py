"""Command marker type and the durable discriminator registry.

A command's discriminator is the string persisted on its envelope. It must
resolve back to exactly the same class in a later process, so resolution goes
through an explicit name -> class map filled at startup instead of importing
arbitrary dotted paths.
"""
import logging
from typing import ClassVar, Dict, Optional, Type

from pydantic import BaseModel, ConfigDict, ValidationError

from relay.core.exceptions import (
	CommandPayloadError,
	RegistryFrozenError,
	UnknownCommandTypeError,
	UnstableCommandTypeError,
)
from relay.services.policies import canonical_json

logger = logging.getLogger(__name__)


class ActionCommand(BaseModel):
	"""Marker base for commands handled by background actions"""

	# Explicit discriminator; falls back to "module.QualName" when unset
	command_type: ClassVar[Optional[str]] = None

	model_config = ConfigDict(frozen=True)

	def to_payload(self) -> str:
		"""Canonical JSON body used for storage and correlation hashing"""
		return canonical_json(self.model_dump(mode="json"))


def get_discriminator(command_cls: Type[ActionCommand]) -> str:
	if command_cls is None:
		raise ValueError("command_cls is required")

	explicit = command_cls.__dict__.get("command_type")
	if explicit is not None:
		if not explicit.strip():
			raise UnstableCommandTypeError(f"Command type '{command_cls!r}' declares an empty discriminator")
		return explicit

	qualname = getattr(command_cls, "__qualname__", "")
	module = getattr(command_cls, "__module__", "")
	if not qualname or not module or "<locals>" in qualname or module == "__main__":
		raise UnstableCommandTypeError(
			f"Command type '{command_cls!r}' must have a stable discriminator"
		)
	return f"{module}.{qualname}"


class CommandTypeRegistry:
	"""Discriminator -> command class. Populated at startup, then read-only."""

	def __init__(self):
		self._types: Dict[str, Type[ActionCommand]] = {}
		self._frozen = False

	def register(self, command_cls: Type[ActionCommand]) -> str:
		if not (isinstance(command_cls, type) and issubclass(command_cls, ActionCommand)):
			raise TypeError(f"{command_cls!r} is not an ActionCommand")

		discriminator = get_discriminator(command_cls)
		existing = self._types.get(discriminator)
		if existing is command_cls:
			return discriminator
		if self._frozen:
			raise RegistryFrozenError(f"Cannot register command type {discriminator} after startup")
		if existing is not None:
			raise ValueError(
				f"Discriminator {discriminator} already registered for {existing.__module__}.{existing.__qualname__}"
			)

		self._types[discriminator] = command_cls
		logger.debug(f"Registered command type {discriminator}")
		return discriminator

	def resolve(self, discriminator: str) -> Type[ActionCommand]:
		if not discriminator or not discriminator.strip():
			raise UnknownCommandTypeError(discriminator or "")
		try:
			return self._types[discriminator]
		except KeyError:
			raise UnknownCommandTypeError(discriminator) from None

	def deserialize(self, discriminator: str, payload: str) -> ActionCommand:
		command_cls = self.resolve(discriminator)
		try:
			return command_cls.model_validate_json(payload)
		except ValidationError as e:
			raise CommandPayloadError(
				f"Payload for {discriminator} cannot be deserialized: {e.error_count()} validation error(s)"
			) from e

	def freeze(self):
		self._frozen = True

	@property
	def frozen(self) -> bool:
		return self._frozen

	def __contains__(self, discriminator: str) -> bool:
		return discriminator in self._types

	def __len__(self) -> int:
		return len(self._types)
