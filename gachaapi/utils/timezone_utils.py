"""
타임존 유틸리티

DB 드라이버에 따라 tz 정보가 빠진 datetime이 돌아오는 경우(SQLite 등)를
UTC 기준으로 맞추기 위한 함수들
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """현재 UTC 시간을 반환합니다."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """naive datetime은 UTC로 간주하고, aware datetime은 UTC로 변환합니다."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
