import logging
import traceback
from typing import Any, Dict

from fastapi import Request
from fastapi.responses import JSONResponse

from .exceptions import ErrorKind, GachaServiceError

logger = logging.getLogger("gachaapi")

STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.GACHA_NOT_FOUND: 404,
    ErrorKind.GACHA_INACTIVE: 403,
    ErrorKind.MAX_DRAWS_REACHED: 409,
    ErrorKind.INVALID_DRAW_COUNT: 400,
    ErrorKind.IDEMPOTENCY_KEY_REUSED: 409,
    ErrorKind.INVALID_DROP_RATE: 422,
    ErrorKind.INVALID_DROP_RATE_CONFIGURATION: 422,
    ErrorKind.EMPTY_ITEM_POOL: 409,
    ErrorKind.NO_ITEMS_AVAILABLE: 409,
    ErrorKind.NO_AVAILABLE_ITEMS_FOR_DRAW: 409,
    ErrorKind.PAYMENT_FAILED: 402,
    ErrorKind.DRAW_PERSISTENCE_FAILED: 500,
    ErrorKind.REWARD_GRANT_FAILED: 502,
    ErrorKind.LEDGER_CREDIT_FAILED: 500,
    ErrorKind.COMPENSATION_FAILED: 500,
    ErrorKind.INSUFFICIENT_BALANCE: 409,
    ErrorKind.INVALID_AMOUNT: 400,
    ErrorKind.INVALID_TRANSFER: 400,
    ErrorKind.LEDGER_TRANSFER_FAILED: 500,
    ErrorKind.LEDGER_TRANSACTION_FAILED: 503,
}


def _request_context(request: Request) -> Dict[str, Any]:
    client = request.client.host if request.client else "-"
    return {
        "method": request.method,
        "url": str(request.url),
        "client": client,
    }


def status_for(exc: GachaServiceError) -> int:
    return STATUS_BY_KIND.get(exc.kind, 500)


async def handle_gacha_service_error(request, exc: GachaServiceError):
    ctx = _request_context(request)
    status_code = status_for(exc)
    message = (
        f"[{exc.kind.value}] {ctx['method']} {ctx['url']} from {ctx['client']} "
        f"-> {status_code} ({exc.charge_outcome.value}): {exc.message}"
    )
    if exc.kind == ErrorKind.COMPENSATION_FAILED:
        logger.critical(message)
    elif status_code >= 500:
        logger.error(message)
    else:
        logger.warning(message)

    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": exc.to_dict()},
    )


async def handle_http_exception(request, exc):
    ctx = _request_context(request)
    error_msg = f"[HTTPException] {ctx['method']} {ctx['url']} from {ctx['client']} -> {exc.status_code}: {exc.detail}"

    if getattr(exc, "status_code", 500) >= 500:
        tb_str = "".join(traceback.format_tb(exc.__traceback__))
        logger.error(f"{error_msg}\n\nStack Trace:\n{tb_str}")
    else:
        logger.warning(error_msg)

    content = {
        "success": False,
        "error": {
            "code": "HTTP_ERROR",
            "message": str(exc.detail),
            "details": {},
        },
    }
    return JSONResponse(status_code=exc.status_code, content=content)


async def handle_validation_error(request, exc):
    ctx = _request_context(request)
    logger.warning(
        f"[ValidationError] {ctx['method']} {ctx['url']} from {ctx['client']} -> 422: {exc.errors()}"
    )
    content = {
        "success": False,
        "error": {
            "code": "VALIDATION_ERROR",
            "message": "Validation failed",
            "details": {"errors": exc.errors()},
        },
    }
    return JSONResponse(status_code=422, content=content)


async def handle_unexpected_error(request, exc):
    ctx = _request_context(request)

    tb_str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error(
        f"\n{'=' * 80}\n"
        f"[Unhandled Error] {ctx['method']} {ctx['url']} from {ctx['client']}\n"
        f"Exception Type: {type(exc).__name__}\n"
        f"Exception Message: {str(exc)}\n\n"
        f"Full Stack Trace:\n{tb_str}"
        f"{'=' * 80}"
    )

    content = {
        "success": False,
        "error": {
            "code": "INTERNAL_ERROR",
            "message": "Internal server error",
            "details": {},
        },
    }
    return JSONResponse(status_code=500, content=content)
