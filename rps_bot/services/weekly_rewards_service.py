"""
Weekly Rewards Service

Aggregates finished matches per Monday-to-Monday UTC week, ranks eligible
players and splits the week's pool across the top ten.

The pool is the treasury share of every fee collected during the week plus
whatever the previous distribution could not hand out. The remainder of a
distribution (floor rounding, or fewer than ten eligible players) rolls
into the following week.

This service only reads MatchResult rows. It writes WeeklyPeriod and
WeeklyReward rows, and touches balances only when a reward is claimed.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rps_bot.config import Config
from rps_bot.constants import WeeklyConstants
from rps_bot.data_models.weekly import WeeklyStanding, WeeklyLeaderboard, DistributionSummary
from rps_bot.database.models import (
    Player, MatchResult, WeeklyPeriod, WeeklyReward, LedgerReason
)
from rps_bot.services.base import BaseService
from rps_bot.utils.payout import calculate_weekly_reward_distribution
from rps_bot.utils.time_utils import to_naive_utc, week_bounds

logger = logging.getLogger(__name__)


class WeeklyRewardError(Exception):
    """Base exception for weekly reward errors"""

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or f"❌ {message}"


class WeeklyPeriodError(WeeklyRewardError):
    """Raised when a period cannot be distributed"""
    pass


class RewardClaimError(WeeklyRewardError):
    """Raised when a reward cannot be claimed"""
    pass


def calculate_points(payouts: Iterable[int]) -> int:
    """
    Points for a week of wins.

    Each win scores POINTS_PER_WIN plus one point per POINTS_PAYOUT_DIVISOR
    tokens of that win's payout, floored per win.
    """
    return sum(
        WeeklyConstants.POINTS_PER_WIN + payout // WeeklyConstants.POINTS_PAYOUT_DIVISOR
        for payout in payouts
    )


def check_eligibility(standing: WeeklyStanding) -> Optional[str]:
    """Return the reason a standing is ineligible, or None if it qualifies"""
    if standing.matches_won < Config.WEEKLY_MIN_WINS:
        return f"needs {Config.WEEKLY_MIN_WINS} wins"
    if standing.unique_opponents < Config.WEEKLY_MIN_UNIQUE_OPPONENTS:
        return f"needs {Config.WEEKLY_MIN_UNIQUE_OPPONENTS} different opponents"
    if not standing.matches_won:
        return "no wins"
    share = standing.max_wins_vs_single_opponent / standing.matches_won
    if share > Config.WEEKLY_MAX_OPPONENT_WIN_SHARE:
        return "too many wins against a single opponent"
    return None


def rank_standings(standings: List[WeeklyStanding]) -> Tuple[List[WeeklyStanding], List[WeeklyStanding]]:
    """
    Split standings into (ranked eligible, ineligible).

    Eligible players are ordered by points, then total winnings, then
    player id so equal records always rank the same way.
    """
    eligible, ineligible = [], []
    for standing in standings:
        reason = check_eligibility(standing)
        standing.is_eligible = reason is None
        standing.ineligible_reason = reason
        (eligible if reason is None else ineligible).append(standing)

    eligible.sort(key=lambda s: (-s.points, -s.total_winnings, s.player_id))
    for index, standing in enumerate(eligible, start=1):
        standing.rank = index
    ineligible.sort(key=lambda s: (-s.points, s.player_id))
    return eligible, ineligible


class WeeklyRewardsService(BaseService):
    """Service for weekly leaderboards, reward distribution and claims."""

    def __init__(self, session_factory, database):
        super().__init__(session_factory)
        self.db = database  # Balance ledger writes on claim

    @staticmethod
    def get_current_week_bounds(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        return week_bounds(now)

    async def _get_or_create_period(self, session: AsyncSession, week_start: datetime) -> WeeklyPeriod:
        result = await session.execute(select(WeeklyPeriod).where(WeeklyPeriod.week_start == week_start))
        period = result.scalar_one_or_none()
        if period is None:
            period = WeeklyPeriod(
                week_start=week_start,
                week_end=week_start + timedelta(days=7),
                rollover_pool=0
            )
            session.add(period)
            await session.flush()
            logger.info(f"Created weekly period {period.id} starting {week_start.date()}")
        return period

    async def _carry_rollover(self, session: AsyncSession, week_start: datetime, amount: int) -> WeeklyPeriod:
        """Add amount to the first undistributed period starting at or after week_start"""
        while True:
            target = await self._get_or_create_period(session, week_start)
            result = await session.execute(
                update(WeeklyPeriod)
                .where(WeeklyPeriod.id == target.id, WeeklyPeriod.is_distributed == False)  # noqa: E712
                .values(rollover_pool=WeeklyPeriod.rollover_pool + amount)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return target
            logger.warning(f"Weekly period {target.id} already distributed, carrying rollover forward")
            week_start += timedelta(days=7)

    async def get_or_create_current_period(self, now: Optional[datetime] = None) -> WeeklyPeriod:
        week_start, _ = self.get_current_week_bounds(now)
        async with self.get_session() as session:
            return await self._get_or_create_period(session, week_start)

    async def get_period(self, period_id: int) -> Optional[WeeklyPeriod]:
        async with self.get_session() as session:
            return await session.get(WeeklyPeriod, period_id)

    # ============================================================================
    # Aggregation
    # ============================================================================

    async def _build_standings(self, session: AsyncSession, period: WeeklyPeriod) -> Tuple[List[WeeklyStanding], int]:
        results = await self.db.get_match_results_between(period.week_start, period.week_end, session=session)

        stats: Dict[int, Dict] = defaultdict(lambda: {
            'played': 0, 'won': 0, 'winnings': 0, 'payouts': [],
            'opponents': set(), 'wins_vs': defaultdict(int)
        })
        for match_result in results:
            game = match_result.session
            if game.challenger_id is None:
                logger.warning(f"Match result {match_result.id} has no challenger, skipping")
                continue
            pair = ((game.creator_id, game.challenger_id), (game.challenger_id, game.creator_id))
            for player_id, opponent_id in pair:
                stats[player_id]['played'] += 1
                stats[player_id]['opponents'].add(opponent_id)
            winner_id = match_result.winner_player_id
            if winner_id is not None:
                loser_id = game.challenger_id if winner_id == game.creator_id else game.creator_id
                stats[winner_id]['won'] += 1
                stats[winner_id]['winnings'] += match_result.payout_winner
                stats[winner_id]['payouts'].append(match_result.payout_winner)
                stats[winner_id]['wins_vs'][loser_id] += 1

        players = {}
        if stats:
            player_rows = await session.execute(select(Player).where(Player.id.in_(list(stats.keys()))))
            players = {p.id: p for p in player_rows.scalars()}

        standings = []
        for player_id, data in stats.items():
            player = players.get(player_id)
            if player is None:
                logger.warning(f"Player record not found for player_id {player_id}, skipping.")
                continue
            standings.append(WeeklyStanding(
                player_id=player_id,
                discord_id=player.discord_id,
                display_name=player.display_name or player.username,
                matches_played=data['played'],
                matches_won=data['won'],
                total_winnings=data['winnings'],
                points=calculate_points(data['payouts']),
                unique_opponents=len(data['opponents']),
                max_wins_vs_single_opponent=max(data['wins_vs'].values(), default=0)
            ))
        return standings, len(results)

    async def build_leaderboard(self, period_id: int) -> WeeklyLeaderboard:
        """Ranked standings for a period (read-only)"""
        async with self.get_session() as session:
            period = await session.get(WeeklyPeriod, period_id)
            if period is None:
                raise WeeklyPeriodError(f"Weekly period {period_id} not found")
            standings, total_matches = await self._build_standings(session, period)
            ranked, ineligible = rank_standings(standings)
            return WeeklyLeaderboard(
                period_id=period.id,
                week_start=period.week_start,
                week_end=period.week_end,
                ranked=ranked,
                ineligible=ineligible,
                total_matches=total_matches
            )

    async def _calculate_pool(self, session: AsyncSession, period: WeeklyPeriod) -> int:
        fees = await session.scalar(
            select(func.coalesce(func.sum(MatchResult.fees_treasury), 0))
            .where(MatchResult.created_at >= period.week_start, MatchResult.created_at < period.week_end)
        )
        return (period.rollover_pool or 0) + (fees or 0)

    async def calculate_pool(self, period: WeeklyPeriod) -> int:
        """Rollover plus the treasury fees collected inside the period"""
        async with self.get_session() as session:
            return await self._calculate_pool(session, period)

    # ============================================================================
    # Distribution
    # ============================================================================

    async def distribute_period(self, period_id: int, now: Optional[datetime] = None) -> DistributionSummary:
        """
        Create reward rows for a finished period and roll the remainder forward.

        Raises:
            WeeklyPeriodError: Unknown, unfinished or already distributed period
        """
        now = to_naive_utc(now)
        async with self.get_session() as session:
            async with session.begin():
                period = await session.get(WeeklyPeriod, period_id)
                if period is None:
                    raise WeeklyPeriodError(f"Weekly period {period_id} not found")
                if period.is_distributed:
                    raise WeeklyPeriodError(
                        f"Weekly period {period_id} already distributed",
                        "❌ This week's rewards were already distributed."
                    )
                if now < period.week_end:
                    raise WeeklyPeriodError(
                        f"Weekly period {period_id} ends {period.week_end.isoformat()}",
                        "❌ This week is not over yet."
                    )

                # Claim the period; a concurrent distributor sees rowcount 0
                claimed = await session.execute(
                    update(WeeklyPeriod)
                    .where(WeeklyPeriod.id == period_id, WeeklyPeriod.is_distributed == False)  # noqa: E712
                    .values(is_distributed=True, distributed_at=now)
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount != 1:
                    raise WeeklyPeriodError(
                        f"Weekly period {period_id} already distributed",
                        "❌ This week's rewards were already distributed."
                    )

                standings, total_matches = await self._build_standings(session, period)
                ranked, _ = rank_standings(standings)
                pool = await self._calculate_pool(session, period)
                amounts = calculate_weekly_reward_distribution(pool)

                distributed = 0
                winners = 0
                for standing, amount in zip(ranked, amounts):
                    if amount <= 0:
                        continue
                    session.add(WeeklyReward(
                        weekly_period_id=period.id,
                        player_id=standing.player_id,
                        rank=standing.rank,
                        points=standing.points,
                        reward_amount=amount
                    ))
                    distributed += amount
                    winners += 1

                rollover = pool - distributed
                next_period = await self._carry_rollover(session, period.week_end, rollover)

                await session.execute(
                    update(WeeklyPeriod)
                    .where(WeeklyPeriod.id == period.id)
                    .values(total_rewards_pool=pool, total_matches=total_matches)
                    .execution_options(synchronize_session=False)
                )

                logger.info(
                    f"Distributed weekly period {period.id}: pool {pool}, paid {distributed} "
                    f"to {winners} player(s), rolled over {rollover} to period {next_period.id}"
                )
                return DistributionSummary(
                    period_id=period.id,
                    total_pool=pool,
                    distributed=distributed,
                    rollover=rollover,
                    winners=winners,
                    next_period_id=next_period.id
                )

    async def auto_distribute(self, now: Optional[datetime] = None) -> List[DistributionSummary]:
        """
        Distribute every finished, undistributed period, oldest first.

        Also makes sure the week that just ended and the current week have
        period rows, so fees from a quiet week are not left out of any pool.
        """
        now = to_naive_utc(now)
        current_start, _ = self.get_current_week_bounds(now)

        async with self.get_session() as session:
            await self._get_or_create_period(session, current_start - timedelta(days=7))
            await self._get_or_create_period(session, current_start)

        async with self.get_session() as session:
            result = await session.execute(
                select(WeeklyPeriod.id)
                .where(WeeklyPeriod.is_distributed == False, WeeklyPeriod.week_end <= now)  # noqa: E712
                .order_by(WeeklyPeriod.week_start)
            )
            pending = list(result.scalars().all())

        summaries = []
        for period_id in pending:
            try:
                summaries.append(await self.distribute_period(period_id, now=now))
            except (WeeklyRewardError, SQLAlchemyError) as e:
                logger.error(f"Auto-distribution failed for weekly period {period_id}: {e}")
        return summaries

    # ============================================================================
    # Claims
    # ============================================================================

    async def claim_reward(self, reward_id: int, caller_discord_id: int,
                           now: Optional[datetime] = None) -> WeeklyReward:
        """
        Credit a weekly reward to its owner's balance, once.

        Raises:
            RewardClaimError: Unknown reward, not the owner, or already claimed
        """
        now = to_naive_utc(now)
        async with self.get_session() as session:
            async with session.begin():
                result = await session.execute(
                    select(WeeklyReward)
                    .options(selectinload(WeeklyReward.player), selectinload(WeeklyReward.weekly_period))
                    .where(WeeklyReward.id == reward_id)
                )
                reward = result.scalar_one_or_none()
                if reward is None:
                    raise RewardClaimError(f"Reward {reward_id} not found")
                if reward.player.discord_id != caller_discord_id:
                    raise RewardClaimError(
                        f"User {caller_discord_id} does not own reward {reward_id}",
                        "❌ That reward isn't yours."
                    )

                claimed = await session.execute(
                    update(WeeklyReward)
                    .where(WeeklyReward.id == reward_id, WeeklyReward.is_claimed == False)  # noqa: E712
                    .values(is_claimed=True, claimed_at=now)
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount != 1:
                    raise RewardClaimError(
                        f"Reward {reward_id} already claimed",
                        "❌ You already claimed this reward."
                    )

                await self.db.apply_balance_change(
                    reward.player_id, reward.reward_amount, LedgerReason.WEEKLY_REWARD, session,
                    weekly_reward_id=reward.id
                )
                await session.refresh(reward, attribute_names=['is_claimed', 'claimed_at'])

                logger.info(
                    f"Player {reward.player_id} claimed weekly reward {reward.id} ({reward.reward_amount})"
                )
                return reward

    async def get_claimable_rewards(self, discord_id: int) -> List[WeeklyReward]:
        async with self.get_session() as session:
            result = await session.execute(
                select(WeeklyReward)
                .join(Player, WeeklyReward.player_id == Player.id)
                .options(selectinload(WeeklyReward.weekly_period))
                .where(Player.discord_id == discord_id, WeeklyReward.is_claimed == False)  # noqa: E712
                .order_by(WeeklyReward.created_at, WeeklyReward.id)
            )
            return list(result.scalars().all())
