"""
Match history data models
"""

from dataclasses import dataclass, field
from typing import List, Optional
from datetime import datetime

from rps_bot.database.models import Move, SessionStatus


@dataclass(frozen=True)
class MatchHistoryEntry:
    """One game seen from one player's side."""
    session_id: int
    status: SessionStatus
    role: str  # "creator" or "challenger"
    opponent_name: Optional[str]
    rounds: int
    stake_per_round: int
    my_moves: List[Move] = field(default_factory=list)
    opponent_moves: List[Move] = field(default_factory=list)
    my_round_wins: int = 0
    opponent_round_wins: int = 0
    is_winner: bool = False
    is_draw: bool = False
    by_forfeit: bool = False
    payout: int = 0
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @property
    def result_label(self) -> str:
        if self.is_draw:
            return "draw"
        return "win" if self.is_winner else "loss"
