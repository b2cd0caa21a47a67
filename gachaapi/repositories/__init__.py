# Repository layer - Data access with Pydantic responses

from .base import BaseRepository
from .gacha_repository import GachaRepository, DrawResultRepository
from .push_medal_repository import PushMedalRepository
from .error_log_repository import ErrorLogRepository

__all__ = [
    "BaseRepository",
    "GachaRepository",
    "DrawResultRepository",
    "PushMedalRepository",
    "ErrorLogRepository",
]
