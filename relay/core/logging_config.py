import logging
import sys

from relay.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def configure_logging(level: str = None):
	"""Configure root logging once per process"""
	global _configured
	if _configured:
		return

	resolved = (level or ("DEBUG" if settings.DEBUG else settings.LOG_LEVEL)).upper()
	logging.basicConfig(
		level=getattr(logging, resolved, logging.INFO),
		format=LOG_FORMAT,
		handlers=[logging.StreamHandler(sys.stdout)],
	)
	# SQL echo is controlled by DB_ECHO, keep the engine logger quiet otherwise
	logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
	_configured = True
