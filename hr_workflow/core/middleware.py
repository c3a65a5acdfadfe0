import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from hr_workflow.core.config import settings
from hr_workflow.core.logging import actor_id_var, request_id_var

logger = logging.getLogger("hr_workflow.http")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds the request id (incoming or fresh) and the claimed actor to the logging context."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(settings.request_id_header) or str(uuid.uuid4())
        claimed_actor = request.headers.get(settings.actor_header, "")
        request_token = request_id_var.set(request_id)
        actor_token = actor_id_var.set(int(claimed_actor) if claimed_actor.isdigit() else None)
        try:
            response = await call_next(request)
        finally:
            actor_id_var.reset(actor_token)
            request_id_var.reset(request_token)
        response.headers[settings.request_id_header] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Process-Time"] = f"{elapsed_ms:.2f}ms"
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={"duration_ms": round(elapsed_ms, 2), "status_code": response.status_code}
        )
        return response
