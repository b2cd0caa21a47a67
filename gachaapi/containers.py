import random

from dependency_injector import containers, providers

from gachaapi.config import Settings
from gachaapi.providers.payment import HttpPaymentGateway
from gachaapi.providers.reward import HttpRewardGateway
from gachaapi.services.draw_algorithm import DrawAlgorithm
from gachaapi.services.draw_coordinator import DrawTransactionCoordinator
from gachaapi.services.error_log_service import ErrorLogService
from gachaapi.services.gacha_service import GachaService
from gachaapi.services.idempotency_service import IdempotencyService
from gachaapi.services.push_medal_service import PushMedalService
from gachaapi.services.redis_service import RedisService


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)


class InfraModule(containers.DeclarativeContainer):
    """Process-wide clients shared across requests."""

    config = providers.DependenciesContainer()

    redis_service = providers.Singleton(RedisService, settings=config.config)
    idempotency_service = providers.Singleton(
        IdempotencyService,
        redis_service=redis_service,
        default_ttl_seconds=config.config.provided.IDEMPOTENCY_TTL_SECONDS,
    )
    payment_gateway = providers.Singleton(
        HttpPaymentGateway,
        base_url=config.config.provided.PAYMENT_API_BASE_URL,
        api_key=config.config.provided.PAYMENT_API_KEY,
        timeout=config.config.provided.PAYMENT_TIMEOUT_SECONDS,
    )
    reward_gateway = providers.Singleton(
        HttpRewardGateway,
        base_url=config.config.provided.REWARD_API_BASE_URL,
        api_key=config.config.provided.REWARD_API_KEY,
        timeout=config.config.provided.REWARD_TIMEOUT_SECONDS,
    )
    draw_algorithm = providers.Singleton(
        DrawAlgorithm,
        rng=providers.Factory(random.SystemRandom),
        pity_threshold=config.config.provided.PITY_THRESHOLD,
    )


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies.

    Services are per-request factories; the SQLAlchemy session is supplied at
    call time (``factory(db=db)``) from the request-scoped ``get_db`` dependency.
    """

    config = providers.DependenciesContainer()
    infra = providers.DependenciesContainer()

    gacha_service = providers.Factory(GachaService, draw_algorithm=infra.draw_algorithm)
    push_medal_service = providers.Factory(
        PushMedalService,
        integrity_epsilon=config.config.provided.INTEGRITY_EPSILON,
    )
    error_log_service = providers.Factory(ErrorLogService)
    draw_coordinator = providers.Factory(
        DrawTransactionCoordinator,
        payment_gateway=infra.payment_gateway,
        reward_gateway=infra.reward_gateway,
        draw_algorithm=infra.draw_algorithm,
        idempotency_service=infra.idempotency_service,
        settings=config.config,
    )


class Container(containers.DeclarativeContainer):
    """Application container."""

    wiring_config = containers.WiringConfiguration(
        modules=[
            "gachaapi.routers.gacha_router",
            "gachaapi.routers.push_medal_router",
            "gachaapi.routers.health_router",
        ],
    )

    config = providers.Container(ConfigModule)
    infra = providers.Container(InfraModule, config=config)
    services = providers.Container(ServiceModule, config=config, infra=infra)
