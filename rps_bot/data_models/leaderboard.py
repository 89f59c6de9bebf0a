"""
Leaderboard data models

Immutable data transfer objects for the winnings leaderboard.
"""

from dataclasses import dataclass
from typing import List, Optional
from datetime import datetime


@dataclass(frozen=True)
class LeaderboardEntry:
    """Single leaderboard row."""
    rank: int
    player_id: int
    discord_id: int
    display_name: str
    total_winnings: int
    matches_played: int
    wins: int
    losses: int
    draws: int

    @property
    def win_rate(self) -> float:
        if not self.matches_played:
            return 0.0
        return (self.wins / self.matches_played) * 100


@dataclass(frozen=True)
class LeaderboardPage:
    """Leaderboard for one timeframe."""
    entries: List[LeaderboardEntry]
    timeframe: str
    since: Optional[datetime] = None
