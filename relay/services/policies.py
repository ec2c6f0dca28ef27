"""Retry, error sanitizing and idempotency helpers.

Everything here is a pure function of its arguments so the dispatcher, the
orchestrator and both outbox stages agree on keys and delays across
processes.
"""
import hashlib
import json
import uuid
from datetime import timedelta
from typing import Any, Optional

from relay.config import settings

BACKOFF_BASE = timedelta(seconds=settings.BACKOFF_BASE_SECONDS)
BACKOFF_MAX_DOUBLINGS = settings.BACKOFF_MAX_DOUBLINGS
ERROR_MESSAGE_MAX_LENGTH = settings.ERROR_MESSAGE_MAX_LENGTH


def compute_backoff(
		attempts: int,
		base: timedelta = BACKOFF_BASE,
		max_doublings: int = BACKOFF_MAX_DOUBLINGS,
) -> timedelta:
	"""base * 2^(min(max(attempts, 1), max_doublings) - 1)"""
	multiplier = min(max(attempts, 1), max_doublings)
	return base * (2 ** (multiplier - 1))


def to_safe_error(exc: BaseException, limit: int = ERROR_MESSAGE_MAX_LENGTH) -> str:
	"""Single-line, length-capped description of an exception for storage"""
	message = type(exc).__name__
	text = str(exc)
	if text and text.strip():
		message = f"{message}: {text}"

	message = message.replace("\r", " ").replace("\n", " ")
	return message[:limit]


def truncate(text: str, limit: int = ERROR_MESSAGE_MAX_LENGTH) -> str:
	return text if len(text) <= limit else text[:limit]


def canonical_json(data: Any) -> str:
	return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_correlation_key(discriminator: str, payload_json: str) -> uuid.UUID:
	"""Deterministic key: first 16 bytes of sha256("{discriminator}|{payload}")"""
	digest = hashlib.sha256(f"{discriminator}|{payload_json}".encode("utf-8")).digest()
	return uuid.UUID(bytes=digest[:16])


def calculate_idempotency_key(correlation_id: uuid.UUID) -> str:
	if correlation_id is None or correlation_id.int == 0:
		raise ValueError("Correlation ID cannot be empty.")
	return str(correlation_id)


def are_keys_equal(key1: Optional[str], key2: Optional[str]) -> bool:
	return key1 == key2


def is_key_for_correlation(idempotency_key: Optional[str], correlation_id: uuid.UUID) -> bool:
	if not idempotency_key:
		return False
	return are_keys_equal(idempotency_key, calculate_idempotency_key(correlation_id))
