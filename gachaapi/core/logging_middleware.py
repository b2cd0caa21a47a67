import logging
import time
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger("gachaapi")


class LoggingMiddleware(BaseHTTPMiddleware):
    """Request/response logging tagged with the caller and idempotency key.

    HTTPException and GachaServiceError are turned into responses by the
    registered exception handlers before they reach this middleware, so the
    status code of the response decides the log level.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.perf_counter()
        method = request.method
        path = request.url.path
        client = request.client.host if request.client else "-"
        user_id = request.headers.get("X-User-Id", "-")
        idempotency_key = request.headers.get("Idempotency-Key")

        tag = f"{method} {path} user={user_id}"
        if idempotency_key:
            tag += f" key={idempotency_key}"

        logger.info(f"[Request] {tag} from {client}")
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"[Unhandled Error] {tag} from {client}")
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        message = f"[Response] {tag} -> {response.status_code} in {duration_ms:.1f}ms"
        if response.status_code >= 500:
            logger.error(message)
        elif response.status_code >= 400:
            logger.warning(message)
        else:
            logger.info(message)
        return response
