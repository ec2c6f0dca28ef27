import asyncio
import logging
from typing import Any, Awaitable, Callable

from celery import Task

from relay.database import engine

logger = logging.getLogger(__name__)


def run_async(coro_fn: Callable[[], Awaitable[Any]]) -> Any:
	"""Run a coroutine on a fresh event loop, as Celery prefork workers have none.

	Pooled connections are bound to the loop that opened them, so the engine is
	disposed before the loop closes.
	"""
	loop = asyncio.new_event_loop()
	asyncio.set_event_loop(loop)
	try:
		return loop.run_until_complete(coro_fn())
	finally:
		loop.run_until_complete(engine.dispose())
		loop.close()


class LoggedTask(Task):
	"""Logs the terminal outcome of every dispatch job"""

	def on_success(self, retval, task_id, args, kwargs):
		logger.debug(f"Task {self.name}[{task_id}] succeeded: {retval}")

	def on_failure(self, exc, task_id, args, kwargs, einfo):
		logger.error(f"Task {self.name}[{task_id}] failed with args {args}: {exc}")
