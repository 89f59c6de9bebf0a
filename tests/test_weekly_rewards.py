from datetime import datetime, timedelta

import pytest

from rps_bot.database.models import LedgerReason
from rps_bot.data_models.weekly import WeeklyStanding
from rps_bot.operations.session_operations import SessionOperations
from rps_bot.services.weekly_rewards_service import (
    WeeklyRewardsService, WeeklyPeriodError, RewardClaimError,
    calculate_points, check_eligibility, rank_standings
)
from conftest import T0, ALICE, BOB, CAROL, DAVE, ERIN, commit, balance_of

WEEK_START = datetime(2025, 1, 6)
AFTER_WEEK = datetime(2025, 1, 13, 1, 0)


def _standing(player_id, won, opponents, max_vs, winnings=0, points=None):
    return WeeklyStanding(
        player_id=player_id,
        discord_id=player_id + 1000,
        display_name=f"p{player_id}",
        matches_played=won,
        matches_won=won,
        total_winnings=winnings,
        points=won * 10 if points is None else points,
        unique_opponents=opponents,
        max_wins_vs_single_opponent=max_vs
    )


async def _play(ops, creator, challenger, now=T0):
    """One round game the creator wins: R beats S. Treasury fee is 10, payout 180."""
    game = await ops.create_session(creator, 1, 100, commit('R'), now=now)
    await ops.join_session(game.id, challenger, 'S', now=now)
    return await ops.reveal_session(game.id, creator, 'R', 'pepper-and-salt', now=now + timedelta(minutes=1))


@pytest.fixture
def service(db):
    return WeeklyRewardsService(db.session_factory, db)


@pytest.fixture
async def played_week(db, players):
    """
    Alice beats three different players, Erin beats Bob three times.

    Six games put 60 into the treasury. Only Alice is eligible.
    """
    ops = SessionOperations(db)
    for opponent in (BOB, CAROL, DAVE):
        await _play(ops, ALICE, opponent)
    for _ in range(3):
        await _play(ops, ERIN, BOB)
    return ops


class TestRules:

    def test_points(self):
        assert calculate_points([]) == 0
        assert calculate_points([99]) == 10
        assert calculate_points([540]) == 15
        assert calculate_points([180, 180]) == 22

    def test_points_floor_each_win_separately(self):
        assert calculate_points([150, 150]) == 22
        assert calculate_points([300]) == 13

    def test_eligibility_thresholds(self):
        assert check_eligibility(_standing(1, won=3, opponents=3, max_vs=1)) is None
        assert check_eligibility(_standing(1, won=2, opponents=2, max_vs=1)) == "needs 3 wins"
        assert "different opponents" in check_eligibility(_standing(1, won=5, opponents=2, max_vs=2))
        assert "single opponent" in check_eligibility(_standing(1, won=4, opponents=3, max_vs=3))

    def test_half_of_wins_against_one_opponent_is_allowed(self):
        assert check_eligibility(_standing(1, won=4, opponents=3, max_vs=2)) is None

    def test_ranking_tie_breaks(self):
        standings = [
            _standing(3, won=3, opponents=3, max_vs=1, winnings=500),
            _standing(2, won=3, opponents=3, max_vs=1, winnings=540),
            _standing(1, won=3, opponents=3, max_vs=1, winnings=540),
            _standing(4, won=3, opponents=1, max_vs=3, winnings=9000),
        ]
        eligible, ineligible = rank_standings(standings)

        assert [s.player_id for s in eligible] == [1, 2, 3]
        assert [s.rank for s in eligible] == [1, 2, 3]
        assert [s.player_id for s in ineligible] == [4]
        assert not ineligible[0].is_eligible
        assert ineligible[0].rank is None

    def test_week_bounds_are_monday_to_monday(self):
        start, end = WeeklyRewardsService.get_current_week_bounds(T0)
        assert start == WEEK_START
        assert end == WEEK_START + timedelta(days=7)
        assert WeeklyRewardsService.get_current_week_bounds(WEEK_START)[0] == WEEK_START


class TestLeaderboard:

    async def test_only_varied_winners_are_ranked(self, db, played_week, service):
        period = await service.get_or_create_current_period(now=T0)
        board = await service.build_leaderboard(period.id)

        assert board.total_matches == 6
        assert [s.discord_id for s in board.ranked] == [ALICE]
        alice = board.ranked[0]
        assert alice.matches_won == 3
        assert alice.total_winnings == 540
        assert alice.points == 33
        assert alice.unique_opponents == 3

        reasons = {s.discord_id: s.ineligible_reason for s in board.ineligible}
        assert "different opponents" in reasons[ERIN]
        assert reasons[BOB] == "needs 3 wins"

    async def test_pool_is_treasury_fees_of_the_week(self, db, played_week, service):
        period = await service.get_or_create_current_period(now=T0)
        assert await service.calculate_pool(period) == 60

    async def test_games_outside_the_week_are_ignored(self, db, players, service):
        ops = SessionOperations(db)
        await _play(ops, ALICE, BOB, now=WEEK_START - timedelta(hours=2))

        period = await service.get_or_create_current_period(now=T0)
        board = await service.build_leaderboard(period.id)
        assert board.total_matches == 0
        assert await service.calculate_pool(period) == 0


class TestDistribution:

    async def test_distribute_pays_top_rank_and_rolls_over_rest(self, db, played_week, service):
        period = await service.get_or_create_current_period(now=T0)

        summary = await service.distribute_period(period.id, now=AFTER_WEEK)

        assert summary.total_pool == 60
        assert summary.distributed == 30
        assert summary.rollover == 30
        assert summary.winners == 1

        next_period = await service.get_period(summary.next_period_id)
        assert next_period.week_start == WEEK_START + timedelta(days=7)
        assert next_period.rollover_pool == 30
        assert await service.calculate_pool(next_period) == 30

        distributed = await service.get_period(period.id)
        assert distributed.is_distributed
        assert distributed.total_rewards_pool == 60
        assert distributed.total_matches == 6

        rewards = await service.get_claimable_rewards(ALICE)
        assert [(r.rank, r.reward_amount) for r in rewards] == [(1, 30)]

    async def test_distribute_twice_is_rejected(self, db, played_week, service):
        period = await service.get_or_create_current_period(now=T0)
        await service.distribute_period(period.id, now=AFTER_WEEK)

        with pytest.raises(WeeklyPeriodError):
            await service.distribute_period(period.id, now=AFTER_WEEK)

        next_period = await service.get_or_create_current_period(now=AFTER_WEEK)
        assert next_period.rollover_pool == 30
        assert len(await service.get_claimable_rewards(ALICE)) == 1

    async def test_rollover_skips_week_already_distributed(self, db, played_week, service):
        first_week = await service.get_or_create_current_period(now=T0)
        second_week = await service.get_or_create_current_period(now=datetime(2025, 1, 15))
        later = datetime(2025, 1, 20, 1, 0)
        await service.distribute_period(second_week.id, now=later)

        summary = await service.distribute_period(first_week.id, now=later)

        assert summary.rollover == 30
        third_week = await service.get_period(summary.next_period_id)
        assert third_week.week_start == datetime(2025, 1, 20)
        assert third_week.rollover_pool == 30
        assert await service.calculate_pool(third_week) == 30
        assert (await service.get_period(second_week.id)).rollover_pool == 0

    async def test_unfinished_week_is_not_distributed(self, db, played_week, service):
        period = await service.get_or_create_current_period(now=T0)
        with pytest.raises(WeeklyPeriodError):
            await service.distribute_period(period.id, now=T0 + timedelta(days=1))
        assert not (await service.get_period(period.id)).is_distributed

    async def test_unknown_period(self, db, service):
        with pytest.raises(WeeklyPeriodError):
            await service.distribute_period(999, now=AFTER_WEEK)

    async def test_quiet_week_rolls_everything_over(self, db, players, service):
        period = await service.get_or_create_current_period(now=T0)
        summary = await service.distribute_period(period.id, now=AFTER_WEEK)
        assert (summary.total_pool, summary.distributed, summary.winners) == (0, 0, 0)

    async def test_auto_distribute_handles_finished_weeks_only(self, db, played_week, service):
        summaries = await service.auto_distribute(now=AFTER_WEEK)

        assert len(summaries) == 1
        assert summaries[0].total_pool == 60
        assert await service.auto_distribute(now=AFTER_WEEK + timedelta(hours=1)) == []


class TestClaims:

    async def test_claim_credits_balance_once(self, db, played_week, service):
        period = await service.get_or_create_current_period(now=T0)
        await service.distribute_period(period.id, now=AFTER_WEEK)
        reward = (await service.get_claimable_rewards(ALICE))[0]
        before = await balance_of(db, ALICE)

        claimed = await service.claim_reward(reward.id, ALICE, now=AFTER_WEEK)

        assert claimed.is_claimed
        assert await balance_of(db, ALICE) == before + 30
        assert await service.get_claimable_rewards(ALICE) == []

        alice = await db.get_player_by_discord_id(ALICE)
        history = await db.get_ledger_history(alice.id, limit=1)
        assert history[0].reason == LedgerReason.WEEKLY_REWARD
        assert history[0].weekly_reward_id == reward.id

        with pytest.raises(RewardClaimError):
            await service.claim_reward(reward.id, ALICE, now=AFTER_WEEK)
        assert await balance_of(db, ALICE) == before + 30

    async def test_only_owner_can_claim(self, db, played_week, service):
        period = await service.get_or_create_current_period(now=T0)
        await service.distribute_period(period.id, now=AFTER_WEEK)
        reward = (await service.get_claimable_rewards(ALICE))[0]

        with pytest.raises(RewardClaimError):
            await service.claim_reward(reward.id, BOB, now=AFTER_WEEK)
        assert len(await service.get_claimable_rewards(ALICE)) == 1

    async def test_unknown_reward(self, db, players, service):
        with pytest.raises(RewardClaimError):
            await service.claim_reward(12345, ALICE)
