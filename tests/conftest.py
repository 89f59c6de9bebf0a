import os
import sys
from dataclasses import dataclass
from datetime import datetime

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from rps_bot.config import Config
from rps_bot.database.database import Database
from rps_bot.utils.commitment import hash_commitment, parse_moves

# Wednesday, so a whole session fits inside one Monday-to-Monday week
T0 = datetime(2025, 1, 8, 12, 0, 0)

ALICE = 1001
BOB = 1002
CAROL = 1003
DAVE = 1004
ERIN = 1005


@dataclass
class FakeDiscordUser:
    """Enough of discord.User for PlayerOperations"""
    id: int
    name: str
    display_name: str = None
    bot: bool = False

    def __post_init__(self):
        if self.display_name is None:
            self.display_name = self.name


@pytest.fixture(autouse=True)
def game_config(monkeypatch):
    """Pin tunables so environment overrides never leak into tests"""
    monkeypatch.setattr(Config, 'STARTING_BALANCE', 1000)
    monkeypatch.setattr(Config, 'ROUND_OPTIONS', (1, 3, 5))
    monkeypatch.setattr(Config, 'STAKE_TIERS', (100, 500, 1000))
    monkeypatch.setattr(Config, 'REVEAL_DEADLINE_SECONDS', 600)
    monkeypatch.setattr(Config, 'TOTAL_FEE_BPS', 1000)
    monkeypatch.setattr(Config, 'TREASURY_FEE_BPS', 500)
    monkeypatch.setattr(Config, 'OPEN_SESSION_TTL_HOURS', 24)
    monkeypatch.setattr(Config, 'FORFEIT_GRACE_MINUTES', 60)
    monkeypatch.setattr(Config, 'WEEKLY_MIN_UNIQUE_OPPONENTS', 3)
    monkeypatch.setattr(Config, 'WEEKLY_MAX_OPPONENT_WIN_SHARE', 0.5)
    monkeypatch.setattr(Config, 'WEEKLY_MIN_WINS', 3)
    monkeypatch.setattr(Config, 'DEBUG', False)


@pytest.fixture
async def db(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'test_rps.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
async def players(db):
    """Registered players keyed by Discord id, each starting with 1000"""
    created = {}
    for discord_id, name in ((ALICE, 'alice'), (BOB, 'bob'), (CAROL, 'carol'), (DAVE, 'dave'), (ERIN, 'erin')):
        created[discord_id] = await db.create_player(discord_id, name)
    return created


def commit(moves, salt='pepper-and-salt'):
    return hash_commitment(parse_moves(moves), salt)


async def balance_of(db, discord_id):
    player = await db.get_player_by_discord_id(discord_id)
    return await db.get_player_balance(player.id)
