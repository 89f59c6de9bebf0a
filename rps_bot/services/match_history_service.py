"""
Match History Service

Recent games for a player, shaped from that player's point of view.
"""

from typing import List, Optional
import logging

from sqlalchemy import select, or_
from sqlalchemy.orm import selectinload

from rps_bot.services.base import BaseService
from rps_bot.constants import HistoryConstants
from rps_bot.data_models.history import MatchHistoryEntry
from rps_bot.database.models import Player, GameSession, SessionStatus, Outcome

logger = logging.getLogger(__name__)


class MatchHistoryService(BaseService):
    """Service for per-player match history"""

    MAX_HISTORY_LIMIT = 50

    async def get_recent_matches(self, discord_id: int,
                                 limit: int = HistoryConstants.RECENT_MATCH_LIMIT,
                                 statuses: Optional[List[SessionStatus]] = None) -> List[MatchHistoryEntry]:
        """
        Most recent sessions the player created or joined, newest first.

        Opponent moves are only included once the session is RESOLVED, and
        the creator's moves only exist after a successful reveal.
        """
        limit = max(1, min(limit, self.MAX_HISTORY_LIMIT))

        async with self.get_session() as session:
            player = (await session.execute(
                select(Player).where(Player.discord_id == discord_id)
            )).scalar_one_or_none()
            if player is None:
                return []

            query = (
                select(GameSession)
                .options(
                    selectinload(GameSession.creator),
                    selectinload(GameSession.challenger),
                    selectinload(GameSession.result)
                )
                .where(or_(GameSession.creator_id == player.id, GameSession.challenger_id == player.id))
            )
            if statuses:
                query = query.where(GameSession.status.in_(statuses))
            query = query.order_by(GameSession.created_at.desc(), GameSession.id.desc()).limit(limit)
            games = list((await session.execute(query)).scalars().all())

        return [self._to_entry(game, player.id) for game in games]

    def _to_entry(self, game: GameSession, player_id: int) -> MatchHistoryEntry:
        is_creator = game.creator_id == player_id
        opponent = game.challenger if is_creator else game.creator
        creator_moves = game.creator_move_list or []
        challenger_moves = game.challenger_move_list or []
        my_moves = creator_moves if is_creator else challenger_moves
        opponent_moves = challenger_moves if is_creator else creator_moves
        if game.status != SessionStatus.RESOLVED:
            opponent_moves = []

        result = game.result
        my_round_wins = opponent_round_wins = payout = 0
        is_winner = is_draw = by_forfeit = False
        if result is not None:
            if is_creator:
                my_round_wins, opponent_round_wins = result.creator_wins, result.challenger_wins
            else:
                my_round_wins, opponent_round_wins = result.challenger_wins, result.creator_wins
            is_draw = result.overall == Outcome.DRAW
            is_winner = result.winner_player_id == player_id
            by_forfeit = result.by_forfeit
            payout = result.payout_winner if is_winner else 0

        return MatchHistoryEntry(
            session_id=game.id,
            status=game.status,
            role="creator" if is_creator else "challenger",
            opponent_name=(opponent.display_name or opponent.username) if opponent else None,
            rounds=game.rounds,
            stake_per_round=game.stake_per_round,
            my_moves=my_moves,
            opponent_moves=opponent_moves,
            my_round_wins=my_round_wins,
            opponent_round_wins=opponent_round_wins,
            is_winner=is_winner,
            is_draw=is_draw,
            by_forfeit=by_forfeit,
            payout=payout,
            created_at=game.created_at,
            resolved_at=game.resolved_at
        )
