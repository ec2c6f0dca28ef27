import asyncio
import logging
import signal
from typing import Optional

from relay.config import settings
from relay.core.container import get_outbox_dispatcher
from relay.core.logging_config import configure_logging
from relay.database import close_db
from relay.services.outbox_dispatcher import OutboxDispatcher, OutboxDispatchReport

logger = logging.getLogger(__name__)


class OutboxPollingWorker:
	"""In-process alternative to the beat schedule: polls the outbox on an interval"""

	def __init__(self, dispatcher: OutboxDispatcher, interval_seconds: float = settings.OUTBOX_POLL_INTERVAL_SECONDS):
		self.dispatcher = dispatcher
		self.interval_seconds = interval_seconds
		self.running = False
		self._stopped = asyncio.Event()

	async def start(self):
		"""Start the polling loop; returns after stop()"""
		self.running = True
		self._stopped.clear()
		logger.info("Outbox polling worker started")

		while self.running:
			try:
				await self.run_once()
			except Exception as e:
				logger.error(f"Outbox polling worker error: {e}")

			try:
				await asyncio.wait_for(self._stopped.wait(), timeout=self.interval_seconds)
			except asyncio.TimeoutError:
				pass

		logger.info("Outbox polling worker stopped")

	async def stop(self):
		"""Stop the polling loop"""
		self.running = False
		self._stopped.set()

	async def run_once(self) -> Optional[OutboxDispatchReport]:
		return await self.dispatcher.dispatch_pending()


async def run_outbox_poller(worker: Optional[OutboxPollingWorker] = None):
	"""Poll until SIGINT or SIGTERM, then release database connections"""
	worker = worker or OutboxPollingWorker(get_outbox_dispatcher())
	loop = asyncio.get_running_loop()
	stop_signals = (signal.SIGINT, signal.SIGTERM)
	for sig in stop_signals:
		loop.add_signal_handler(sig, lambda: asyncio.ensure_future(worker.stop()))

	try:
		await worker.start()
	finally:
		for sig in stop_signals:
			loop.remove_signal_handler(sig)
		await close_db()


def main():
	configure_logging()
	asyncio.run(run_outbox_poller())


if __name__ == "__main__":
	main()
