import sys
import os

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text
from gachaapi.database.connection import engine
from gachaapi.config import settings
from gachaapi.models.base import Base

# 테이블 메타데이터 등록
from gachaapi.models import gacha, internal, push_medal  # noqa: F401


def init_db():
    """데이터베이스 초기화"""
    try:
        # 스키마 생성 (PostgreSQL)
        if engine.dialect.name == "postgresql":
            with engine.connect() as conn:
                conn.execute(
                    text(f"CREATE SCHEMA IF NOT EXISTS {settings.POSTGRES_SCHEMA}")
                )
                conn.commit()

        # 테이블 생성
        Base.metadata.create_all(bind=engine)
        print(
            f"Database initialized successfully ({engine.dialect.name}, "
            f"tables: {', '.join(sorted(Base.metadata.tables))})"
        )

    except Exception as e:
        print(f"Database initialization failed: {str(e)}")
        raise


if __name__ == "__main__":
    init_db()
