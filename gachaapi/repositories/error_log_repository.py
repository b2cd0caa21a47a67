"""
ErrorLog Repository

운영자 확인이 필요한 실패 상황 추적을 위한 데이터 액세스 계층
"""

from typing import Any, Dict, List

from sqlalchemy import desc
from sqlalchemy.orm import Session

from gachaapi.models.internal import ErrorLog
from gachaapi.repositories.base import BaseRepository
from gachaapi.schemas.error_log import ErrorLogResponse


class ErrorLogRepository(BaseRepository[ErrorLog, ErrorLogResponse]):
    """ErrorLog 전용 Repository"""

    def __init__(self, db: Session):
        super().__init__(ErrorLog, ErrorLogResponse, db)

    def create_error_log(
        self, check_type: str, details: Dict[str, Any]
    ) -> ErrorLogResponse:
        """에러 로그 생성"""
        try:
            error_log = ErrorLog(check_type=check_type, status="FAILED", details=details)

            self.db.add(error_log)
            self.db.flush()
            self.db.commit()

            return ErrorLogResponse.model_validate(error_log)

        except Exception as e:
            self.db.rollback()
            raise Exception(f"Failed to create error log: {str(e)}")

    def get_recent_errors(self, limit: int = 50) -> List[ErrorLogResponse]:
        """최근 에러 로그 조회 (최신순)"""
        error_logs = (
            self.db.query(ErrorLog).order_by(desc(ErrorLog.id)).limit(limit).all()
        )
        return [ErrorLogResponse.model_validate(log) for log in error_logs]

    def count_unresolved(self) -> int:
        return self.count({"status": "FAILED"})
