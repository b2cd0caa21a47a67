import logging
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from mangum import Mangum
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from gachaapi import containers
from gachaapi.config import settings
from gachaapi.core.exception_handlers import (
    handle_gacha_service_error,
    handle_http_exception,
    handle_unexpected_error,
    handle_validation_error,
)
from gachaapi.core.exceptions import GachaServiceError
from gachaapi.core.logging_middleware import LoggingMiddleware
from gachaapi.logging_config import setup_logging
from gachaapi.routers import gacha_router, health_router, push_medal_router

load_dotenv("gachaapi/.env")
setup_logging(settings.LOG_LEVEL, settings.RECONCILIATION_LOG_FILE)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title=settings.PROJECT_NAME, debug=settings.DEBUG)
    app.container = containers.Container()  # type: ignore

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    app.add_exception_handler(GachaServiceError, handle_gacha_service_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(health_router.router)
    app.include_router(gacha_router.router, prefix=settings.API_V1_STR)
    app.include_router(push_medal_router.router, prefix=settings.API_V1_STR)

    @app.on_event("shutdown")
    def close_clients() -> None:
        app.container.infra.redis_service().close()  # type: ignore

    logger.info(f"{settings.APP_NAME} started ({settings.ENVIRONMENT})")
    return app


app = create_app()

handler = Mangum(app)
