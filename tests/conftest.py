import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_ENABLED", "false")

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gachaapi.database.connection import enable_sqlite_savepoints
from gachaapi.models.base import Base
from gachaapi.models.gacha import Gacha, GachaItem
from gachaapi.models import internal, push_medal  # noqa: F401
from gachaapi.schemas.gacha import GachaStatus, Rarity


@pytest.fixture
def engine():
    engine = enable_sqlite_savepoints(
        create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(
        autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_gacha(db):
    """가챠 + 아이템 생성 헬퍼 (drop_rate는 정규화된 값으로 전달)"""

    def _make(
        items,
        price=1000,
        medal_reward=5,
        status=GachaStatus.ACTIVE,
        max_draws=None,
        total_draws=0,
        start_date=None,
        end_date=None,
        creator_id="creator-1",
    ):
        now = datetime.now(timezone.utc)
        gacha = Gacha(
            creator_id=creator_id,
            name="Test Gacha",
            description="",
            price=price,
            medal_reward=medal_reward,
            status=status,
            start_date=start_date or now - timedelta(days=1),
            end_date=end_date,
            max_draws=max_draws,
            total_draws=total_draws,
        )
        for position, item in enumerate(items):
            gacha.items.append(
                GachaItem(
                    name=item.get("name", f"item-{position}"),
                    rarity=item.get("rarity", Rarity.COMMON),
                    drop_rate=item["drop_rate"],
                    reward_id=item.get("reward_id"),
                    max_count=item.get("max_count"),
                    current_count=item.get("current_count", 0),
                    sort_order=position,
                )
            )
        db.add(gacha)
        db.commit()
        return gacha

    return _make
