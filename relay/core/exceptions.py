class RelayError(Exception):
	"""Base class for dispatch and outbox errors"""


class UnstableCommandTypeError(RelayError, TypeError):
	"""The command class has no name that survives a process restart"""


class UnknownCommandTypeError(RelayError, LookupError):
	"""A persisted discriminator does not map to any registered command class"""

	def __init__(self, discriminator: str):
		super().__init__(f"Cannot resolve command type discriminator '{discriminator}'")
		self.discriminator = discriminator


class CommandPayloadError(RelayError, ValueError):
	"""A persisted payload cannot be rebuilt into its command class"""


class RegistryFrozenError(RelayError, RuntimeError):
	"""Registration attempted after startup completed"""


class DeliveryHandlerNotRegisteredError(RelayError, LookupError):
	def __init__(self, handler_name: str):
		super().__init__(f"Outbox handler '{handler_name}' is not registered")
		self.handler_name = handler_name


class TemplateNotFoundError(RelayError, FileNotFoundError):
	pass


class NotificationDeliveryError(RelayError):
	"""Raised by the email job so the job runner records the failure"""
