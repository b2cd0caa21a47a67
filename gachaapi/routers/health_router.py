from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gachaapi.containers import Container
from gachaapi.database.session import get_db
from gachaapi.schemas.health import HealthCheckResponse
from gachaapi.services.redis_service import RedisService

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
@inject
def health_check(
    db: Session = Depends(get_db),
    error_log_service_factory=Depends(
        Provide[Container.services.error_log_service.provider]
    ),
    redis_service: RedisService = Depends(Provide[Container.infra.redis_service]),
) -> HealthCheckResponse:
    """Health check endpoint."""

    summary = error_log_service_factory(db=db).get_health_summary()
    summary.cache = redis_service.ping()
    return summary
