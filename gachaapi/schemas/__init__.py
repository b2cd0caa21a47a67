from .gacha import GachaItemSchema, GachaSchema, Rarity, GachaStatus, DrawResponse
from .push_medal import PushMedalTransactionSchema, PushMedalTransactionType
