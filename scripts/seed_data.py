"""
샘플 가챠 시드 스크립트
원시 가중치로 아이템을 작성하면 저장 시점에 합계 1.0으로 정규화됩니다.
"""

import sys
import os

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime, timedelta, timezone
from gachaapi.database.session import get_db_context
from gachaapi.schemas.gacha import GachaCreate, GachaItemCreate, Rarity
from gachaapi.services.gacha_service import GachaService


def seed_sample_gacha(creator_id: str = "sample-creator"):
    """기본 가챠 시드 (가중치 합계 100)"""

    default_items = [
        GachaItemCreate(name="Common Sticker", rarity=Rarity.COMMON, drop_rate=60),
        GachaItemCreate(name="Common Wallpaper", rarity=Rarity.COMMON, drop_rate=25),
        GachaItemCreate(
            name="Rare Voice Clip", rarity=Rarity.RARE, drop_rate=10, reward_id="voice-001"
        ),
        GachaItemCreate(
            name="Epic Signed Card",
            rarity=Rarity.EPIC,
            drop_rate=4,
            reward_id="card-001",
            max_count=100,
        ),
        GachaItemCreate(
            name="Legendary Live Ticket",
            rarity=Rarity.LEGENDARY,
            drop_rate=1,
            reward_id="ticket-001",
            max_count=5,
        ),
    ]

    request = GachaCreate(
        creator_id=creator_id,
        name="Launch Gacha",
        description="Sample gacha for local development",
        price=300,
        medal_reward=10,
        start_date=datetime.now(timezone.utc) - timedelta(minutes=1),
        end_date=datetime.now(timezone.utc) + timedelta(days=30),
        items=default_items,
    )

    try:
        with get_db_context() as db:
            gacha = GachaService(db).create_gacha(request)
        print(f"✅ 가챠 시드 데이터 생성 완료: {gacha.id} ({gacha.name})")
        for item in gacha.items:
            print(f"   {item.rarity.value:<10} {item.drop_rate:.4f}  {item.name}")
    except Exception as e:
        print(f"❌ 가챠 시드 데이터 생성 실패: {str(e)}")
        raise


if __name__ == "__main__":
    seed_sample_gacha(*sys.argv[1:2])
