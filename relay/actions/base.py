from relay.commands.base import ActionCommand
from relay.services.execution_scope import ExecutionScope


class BackgroundAction:
	"""Handler for one command type. A new instance is built per execution scope."""

	def __init__(self, scope: ExecutionScope):
		self.scope = scope

	async def execute(self, command: ActionCommand):
		raise NotImplementedError
