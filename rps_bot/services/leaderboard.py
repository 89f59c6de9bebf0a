"""
Leaderboard service

Ranks players by tokens won over a timeframe (week, month or all time).
"""

from typing import Optional, Dict
from datetime import datetime, timedelta
import asyncio
import time
import logging

from sqlalchemy import select
from rps_bot.services.base import BaseService
from rps_bot.data_models.leaderboard import LeaderboardPage, LeaderboardEntry
from rps_bot.database.models import Player, GameSession, MatchResult, Outcome
from rps_bot.constants import HistoryConstants
from rps_bot.utils.time_utils import to_naive_utc

logger = logging.getLogger(__name__)

TIMEFRAMES = {
    'week': timedelta(days=7),
    'month': timedelta(days=30),
    'all': None,
}


class LeaderboardService(BaseService):
    """Service for winnings leaderboards with a short TTL cache."""

    def __init__(self, session_factory, cache_ttl: int = 60):
        super().__init__(session_factory)
        self._cache: Dict[str, LeaderboardPage] = {}
        self._cache_timestamps: Dict[str, float] = {}
        self._cache_ttl = cache_ttl
        self._cache_lock = asyncio.Lock()

    async def clear_cache(self):
        async with self._cache_lock:
            self._cache.clear()
            self._cache_timestamps.clear()

    async def get_leaderboard(self, timeframe: str = 'all',
                              limit: int = HistoryConstants.LEADERBOARD_PAGE_SIZE,
                              now: Optional[datetime] = None) -> LeaderboardPage:
        """
        Players ranked by total winnings in the timeframe.

        Only players with at least one finished match in the timeframe are
        listed. Ties are broken by wins, then player id.
        """
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"timeframe must be one of {', '.join(TIMEFRAMES)}")
        if limit < 1 or limit > 50:
            raise ValueError("limit must be between 1 and 50")

        cache_key = f"leaderboard:{timeframe}:{limit}"
        use_cache = now is None
        if use_cache:
            async with self._cache_lock:
                cached_at = self._cache_timestamps.get(cache_key)
                if cached_at is not None and time.time() - cached_at < self._cache_ttl:
                    return self._cache[cache_key]

        now = to_naive_utc(now)
        since = now - TIMEFRAMES[timeframe] if TIMEFRAMES[timeframe] else None

        async with self.get_session() as session:
            query = (
                select(
                    MatchResult.overall,
                    MatchResult.payout_winner,
                    MatchResult.winner_player_id,
                    GameSession.creator_id,
                    GameSession.challenger_id
                )
                .join(GameSession, MatchResult.session_id == GameSession.id)
                .where(GameSession.challenger_id.is_not(None))
            )
            if since is not None:
                query = query.where(MatchResult.created_at >= since)
            rows = (await session.execute(query)).all()

            stats: Dict[int, Dict[str, int]] = {}

            def _bucket(player_id: int) -> Dict[str, int]:
                return stats.setdefault(player_id, {'winnings': 0, 'played': 0, 'wins': 0, 'losses': 0, 'draws': 0})

            for row in rows:
                for player_id in (row.creator_id, row.challenger_id):
                    _bucket(player_id)['played'] += 1
                if row.overall == Outcome.DRAW:
                    _bucket(row.creator_id)['draws'] += 1
                    _bucket(row.challenger_id)['draws'] += 1
                    continue
                winner_id = row.winner_player_id
                loser_id = row.challenger_id if winner_id == row.creator_id else row.creator_id
                _bucket(winner_id)['wins'] += 1
                _bucket(winner_id)['winnings'] += row.payout_winner
                _bucket(loser_id)['losses'] += 1

            players = {}
            if stats:
                player_rows = await session.execute(select(Player).where(Player.id.in_(list(stats.keys()))))
                players = {p.id: p for p in player_rows.scalars()}

        ordered = sorted(
            (pid for pid in stats if pid in players),
            key=lambda pid: (-stats[pid]['winnings'], -stats[pid]['wins'], pid)
        )
        entries = [
            LeaderboardEntry(
                rank=rank,
                player_id=pid,
                discord_id=players[pid].discord_id,
                display_name=players[pid].display_name or players[pid].username,
                total_winnings=stats[pid]['winnings'],
                matches_played=stats[pid]['played'],
                wins=stats[pid]['wins'],
                losses=stats[pid]['losses'],
                draws=stats[pid]['draws']
            )
            for rank, pid in enumerate(ordered[:limit], start=1)
        ]
        page = LeaderboardPage(entries=entries, timeframe=timeframe, since=since)

        if use_cache:
            async with self._cache_lock:
                self._cache[cache_key] = page
                self._cache_timestamps[cache_key] = time.time()
        return page
