from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request
import uuid
import logging

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
	"""Propagate X-Request-ID so operator calls can be traced in the logs"""

	async def dispatch(self, request: Request, call_next):
		request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
		request.state.request_id = request_id
		response = await call_next(request)

		response.headers["X-Request-ID"] = request_id
		logger.debug(f"{request.method} {request.url.path} [{request_id}] - {response.status_code}")
		return response
