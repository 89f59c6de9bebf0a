"""
Weekly rewards data models
"""

from dataclasses import dataclass, field
from typing import List, Optional
from datetime import datetime


@dataclass
class WeeklyStanding:
    """Aggregated weekly results for one player."""
    player_id: int
    discord_id: int
    display_name: str
    matches_played: int = 0
    matches_won: int = 0
    total_winnings: int = 0
    points: int = 0
    unique_opponents: int = 0
    max_wins_vs_single_opponent: int = 0
    is_eligible: bool = False
    ineligible_reason: Optional[str] = None
    rank: Optional[int] = None


@dataclass(frozen=True)
class WeeklyLeaderboard:
    period_id: int
    week_start: datetime
    week_end: datetime
    ranked: List[WeeklyStanding] = field(default_factory=list)
    ineligible: List[WeeklyStanding] = field(default_factory=list)
    total_matches: int = 0


@dataclass(frozen=True)
class DistributionSummary:
    period_id: int
    total_pool: int
    distributed: int
    rollover: int
    winners: int
    next_period_id: Optional[int] = None
