"""
Wager lifecycle against a real SQLite database.

Balances start at 1000. The worked example throughout is a 3 round game at
100 per round: each side escrows 300, the pot is 600, the fee is 60
(30 treasury, 30 burn) and the winner receives 540.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select, func

from rps_bot.database.models import (
    SessionStatus, Outcome, LedgerReason, MatchResult, GameSession, BalanceLedger
)
from rps_bot.operations.session_operations import (
    SessionOperations, SessionOperationError, SessionValidationError, SessionNotFoundError,
    SessionStateError, InsufficientFundsError, CommitmentMismatchError, SettlementResult
)
from conftest import T0, ALICE, BOB, CAROL, commit, balance_of

SALT = 'pepper-and-salt'
CREATOR_MOVES = 'RPR'
CHALLENGER_MOVES = 'SRP'  # creator wins 2-1


@pytest.fixture
def ops(db):
    return SessionOperations(db)


async def _open_game(ops, moves=CREATOR_MOVES, rounds=3, stake=100, creator=ALICE, **kwargs):
    return await ops.create_session(creator, rounds, stake, commit(moves, SALT), now=T0, **kwargs)


async def _joined_game(ops, moves=CREATOR_MOVES, challenger_moves=CHALLENGER_MOVES):
    game = await _open_game(ops, moves)
    return await ops.join_session(game.id, BOB, challenger_moves, now=T0 + timedelta(minutes=1))


async def _result_count(db):
    async with db.get_session() as session:
        return await session.scalar(select(func.count(MatchResult.id)))


class TestCreate:

    async def test_create_escrows_total_stake(self, db, players, ops):
        game = await _open_game(ops)

        assert game.status == SessionStatus.OPEN
        assert game.total_stake == 300
        assert game.creator.discord_id == ALICE
        assert game.challenger_id is None
        assert game.creator_moves is None
        assert await balance_of(db, ALICE) == 700

        history = await db.get_ledger_history(players[ALICE].id)
        assert history[0].reason == LedgerReason.SESSION_ESCROW
        assert history[0].change_amount == -300
        assert history[0].session_id == game.id

    @pytest.mark.parametrize("rounds,stake", [(2, 100), (3, 250), (0, 100), (3, 0)])
    async def test_create_rejects_unsupported_tiers(self, db, players, ops, rounds, stake):
        with pytest.raises(SessionValidationError):
            await ops.create_session(ALICE, rounds, stake, commit('R' * max(rounds, 1)), now=T0)
        assert await balance_of(db, ALICE) == 1000

    async def test_create_rejects_bad_commitment(self, db, players, ops):
        with pytest.raises(SessionValidationError):
            await ops.create_session(ALICE, 3, 100, 'not-a-hash', now=T0)

    async def test_create_with_insufficient_funds_leaves_nothing_behind(self, db, players, ops):
        with pytest.raises(InsufficientFundsError) as exc_info:
            await ops.create_session(ALICE, 5, 1000, commit('RRRRR'), now=T0)

        assert exc_info.value.required == 5000
        assert exc_info.value.available == 1000
        assert await balance_of(db, ALICE) == 1000
        assert await db.get_open_sessions(include_private=True) == []

    async def test_create_requires_registered_player(self, db, players, ops):
        with pytest.raises(SessionValidationError):
            await ops.create_session(999, 1, 100, commit('R'), now=T0)

    async def test_private_sessions_stay_out_of_lobby(self, db, players, ops):
        public = await _open_game(ops)
        await _open_game(ops, creator=CAROL, is_private=True)

        lobby = await db.get_open_sessions()
        assert [g.id for g in lobby] == [public.id]
        assert len(await db.get_open_sessions(include_private=True)) == 2
        assert [g.id for g in await db.get_sessions_for_creator(ALICE)] == [public.id]


class TestCancel:

    async def test_cancel_refunds_once(self, db, players, ops):
        game = await _open_game(ops)

        cancelled = await ops.cancel_session(game.id, ALICE, now=T0 + timedelta(minutes=5))
        assert cancelled.status == SessionStatus.CANCELLED
        assert await balance_of(db, ALICE) == 1000

        with pytest.raises(SessionStateError):
            await ops.cancel_session(game.id, ALICE, now=T0 + timedelta(minutes=6))
        assert await balance_of(db, ALICE) == 1000

    async def test_only_creator_can_cancel(self, db, players, ops):
        game = await _open_game(ops)
        with pytest.raises(SessionStateError):
            await ops.cancel_session(game.id, BOB, now=T0)
        assert (await db.get_game_session(game.id)).status == SessionStatus.OPEN

    async def test_cannot_cancel_after_join(self, db, players, ops):
        game = await _joined_game(ops)
        with pytest.raises(SessionStateError):
            await ops.cancel_session(game.id, ALICE, now=T0 + timedelta(minutes=2))
        assert await balance_of(db, ALICE) == 700

    async def test_cancel_unknown_session(self, db, players, ops):
        with pytest.raises(SessionNotFoundError):
            await ops.cancel_session(4242, ALICE, now=T0)


class TestJoin:

    async def test_join_escrows_and_sets_deadline(self, db, players, ops):
        joined = await _joined_game(ops)

        assert joined.status == SessionStatus.AWAITING_REVEAL
        assert joined.challenger.discord_id == BOB
        assert joined.challenger_moves == 'S,R,P'
        assert joined.joined_at == T0 + timedelta(minutes=1)
        assert joined.reveal_deadline == T0 + timedelta(minutes=1, seconds=600)
        assert await balance_of(db, ALICE) == 700
        assert await balance_of(db, BOB) == 700

    async def test_cannot_join_own_game(self, db, players, ops):
        game = await _open_game(ops)
        with pytest.raises(SessionStateError):
            await ops.join_session(game.id, ALICE, 'SSS', now=T0)
        assert (await db.get_game_session(game.id)).status == SessionStatus.OPEN
        assert await balance_of(db, ALICE) == 700

    @pytest.mark.parametrize("moves", ['SS', 'SSSS', 'SXS'])
    async def test_join_rejects_bad_moves(self, db, players, ops, moves):
        game = await _open_game(ops)
        with pytest.raises(SessionValidationError):
            await ops.join_session(game.id, BOB, moves, now=T0)
        assert (await db.get_game_session(game.id)).status == SessionStatus.OPEN
        assert await balance_of(db, BOB) == 1000

    async def test_join_with_insufficient_funds_keeps_game_open(self, db, players, ops):
        game = await _open_game(ops, rounds=5, stake=100)
        await ops.create_session(BOB, 5, 100, commit('RRRRR'), now=T0)
        await ops.create_session(BOB, 1, 100, commit('R'), now=T0)

        with pytest.raises(InsufficientFundsError):
            await ops.join_session(game.id, BOB, 'RRRRR', now=T0)

        reloaded = await db.get_game_session(game.id)
        assert reloaded.status == SessionStatus.OPEN
        assert reloaded.challenger_id is None
        assert await balance_of(db, BOB) == 400

    async def test_second_joiner_is_rejected(self, db, players, ops):
        game = await _joined_game(ops)
        with pytest.raises(SessionStateError):
            await ops.join_session(game.id, CAROL, 'RRR', now=T0 + timedelta(minutes=2))
        assert await balance_of(db, CAROL) == 1000
        assert (await db.get_game_session(game.id)).challenger.discord_id == BOB

    async def test_concurrent_joins_have_one_winner(self, db, players, ops):
        game = await _open_game(ops)

        results = await asyncio.gather(
            ops.join_session(game.id, BOB, 'RRR', now=T0),
            ops.join_session(game.id, CAROL, 'PPP', now=T0),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, GameSession)]
        losers = [r for r in results if not isinstance(r, GameSession)]
        assert len(winners) == 1
        assert all(isinstance(r, SessionOperationError) for r in losers)

        reloaded = await db.get_game_session(game.id)
        joined_by = reloaded.challenger.discord_id
        other = CAROL if joined_by == BOB else BOB
        assert await balance_of(db, joined_by) == 700
        assert await balance_of(db, other) == 1000


class TestReveal:

    async def test_creator_wins_two_one(self, db, players, ops):
        joined = await _joined_game(ops)

        settled = await ops.reveal_session(joined.id, ALICE, CREATOR_MOVES, SALT, now=T0 + timedelta(minutes=3))

        assert settled.session.status == SessionStatus.RESOLVED
        assert settled.outcome == Outcome.CREATOR
        assert (settled.result.creator_wins, settled.result.challenger_wins) == (2, 1)
        assert settled.result.pot == 600
        assert settled.result.fees_treasury == 30
        assert settled.result.fees_burn == 30
        assert settled.result.payout_winner == 540
        assert settled.result.winner_player_id == players[ALICE].id
        assert len(settled.result.rounds_outcome) == 3
        assert settled.session.creator_moves == 'R,P,R'

        assert await balance_of(db, ALICE) == 1240
        assert await balance_of(db, BOB) == 700

        alice = await db.get_player_by_discord_id(ALICE)
        bob = await db.get_player_by_discord_id(BOB)
        assert (alice.wins, alice.losses) == (1, 0)
        assert (bob.wins, bob.losses) == (0, 1)

    async def test_challenger_win_pays_challenger(self, db, players, ops):
        joined = await _joined_game(ops, moves='SSS', challenger_moves='RRR')
        settled = await ops.reveal_session(joined.id, ALICE, 'SSS', SALT, now=T0 + timedelta(minutes=3))

        assert settled.outcome == Outcome.CHALLENGER
        assert await balance_of(db, ALICE) == 700
        assert await balance_of(db, BOB) == 1240

    async def test_draw_refunds_both_without_fees(self, db, players, ops):
        joined = await _joined_game(ops, moves='RPS', challenger_moves='RPS')
        settled = await ops.reveal_session(joined.id, ALICE, 'RPS', SALT, now=T0 + timedelta(minutes=3))

        assert settled.is_draw
        assert settled.result.winner_player_id is None
        assert settled.result.total_fees == 0
        assert settled.result.payout_winner == 0
        assert await balance_of(db, ALICE) == 1000
        assert await balance_of(db, BOB) == 1000

        history = await db.get_ledger_history(players[BOB].id)
        assert history[0].reason == LedgerReason.DRAW_REFUND

    async def test_mismatch_changes_nothing(self, db, players, ops):
        joined = await _joined_game(ops)

        with pytest.raises(CommitmentMismatchError):
            await ops.reveal_session(joined.id, ALICE, 'RRR', SALT, now=T0 + timedelta(minutes=3))
        with pytest.raises(CommitmentMismatchError):
            await ops.reveal_session(joined.id, ALICE, CREATOR_MOVES, 'wrong-salt', now=T0 + timedelta(minutes=3))

        reloaded = await db.get_game_session(joined.id)
        assert reloaded.status == SessionStatus.AWAITING_REVEAL
        assert reloaded.creator_moves is None
        assert await balance_of(db, ALICE) == 700
        assert await balance_of(db, BOB) == 700
        assert await _result_count(db) == 0

    async def test_only_creator_can_reveal(self, db, players, ops):
        joined = await _joined_game(ops)
        with pytest.raises(SessionStateError):
            await ops.reveal_session(joined.id, BOB, CREATOR_MOVES, SALT, now=T0 + timedelta(minutes=3))

    async def test_reveal_on_deadline_is_accepted(self, db, players, ops):
        joined = await _joined_game(ops)
        settled = await ops.reveal_session(joined.id, ALICE, CREATOR_MOVES, SALT, now=joined.reveal_deadline)
        assert settled.session.status == SessionStatus.RESOLVED

    async def test_reveal_after_deadline_is_rejected(self, db, players, ops):
        joined = await _joined_game(ops)
        with pytest.raises(SessionStateError):
            await ops.reveal_session(
                joined.id, ALICE, CREATOR_MOVES, SALT, now=joined.reveal_deadline + timedelta(seconds=1)
            )
        assert (await db.get_game_session(joined.id)).status == SessionStatus.AWAITING_REVEAL

    async def test_reveal_before_join_is_rejected(self, db, players, ops):
        game = await _open_game(ops)
        with pytest.raises(SessionStateError):
            await ops.reveal_session(game.id, ALICE, CREATOR_MOVES, SALT, now=T0)

    async def test_second_reveal_pays_nothing(self, db, players, ops):
        joined = await _joined_game(ops)
        await ops.reveal_session(joined.id, ALICE, CREATOR_MOVES, SALT, now=T0 + timedelta(minutes=3))

        with pytest.raises(SessionStateError):
            await ops.reveal_session(joined.id, ALICE, CREATOR_MOVES, SALT, now=T0 + timedelta(minutes=4))
        assert await balance_of(db, ALICE) == 1240
        assert await _result_count(db) == 1

    async def test_reveal_requires_salt(self, db, players, ops):
        joined = await _joined_game(ops)
        with pytest.raises(SessionValidationError):
            await ops.reveal_session(joined.id, ALICE, CREATOR_MOVES, '', now=T0 + timedelta(minutes=3))

    async def test_reveal_needs_one_move_per_round(self, db, players, ops):
        joined = await _joined_game(ops)
        with pytest.raises(SessionValidationError):
            await ops.reveal_session(joined.id, ALICE, 'RP', SALT, now=T0 + timedelta(minutes=3))
        assert (await db.get_game_session(joined.id)).status == SessionStatus.AWAITING_REVEAL
        assert await _result_count(db) == 0


class TestForfeit:

    async def test_forfeit_after_deadline_pays_challenger(self, db, players, ops):
        joined = await _joined_game(ops)

        settled = await ops.forfeit_session(joined.id, BOB, now=joined.reveal_deadline + timedelta(seconds=1))

        assert settled.session.status == SessionStatus.FORFEITED
        assert settled.result.by_forfeit
        assert settled.result.rounds_outcome == []
        assert settled.result.overall == Outcome.CHALLENGER
        assert settled.result.payout_winner == 540
        assert await balance_of(db, ALICE) == 700
        assert await balance_of(db, BOB) == 1240

    async def test_forfeit_on_deadline_is_too_early(self, db, players, ops):
        joined = await _joined_game(ops)
        with pytest.raises(SessionStateError):
            await ops.forfeit_session(joined.id, BOB, now=joined.reveal_deadline)
        assert await balance_of(db, BOB) == 700

    async def test_only_challenger_can_forfeit(self, db, players, ops):
        joined = await _joined_game(ops)
        late = joined.reveal_deadline + timedelta(minutes=1)
        for caller in (ALICE, CAROL):
            with pytest.raises(SessionStateError):
                await ops.forfeit_session(joined.id, caller, now=late)

    async def test_reveal_after_forfeit_is_rejected(self, db, players, ops):
        joined = await _joined_game(ops)
        await ops.forfeit_session(joined.id, BOB, now=joined.reveal_deadline + timedelta(seconds=1))
        with pytest.raises(SessionStateError):
            await ops.reveal_session(joined.id, ALICE, CREATOR_MOVES, SALT, now=joined.reveal_deadline)
        assert await balance_of(db, ALICE) == 700

    async def test_reveal_racing_forfeit_settles_once(self, db, players, ops):
        joined = await _joined_game(ops)

        results = await asyncio.gather(
            ops.reveal_session(joined.id, ALICE, CREATOR_MOVES, SALT, now=joined.reveal_deadline),
            ops.forfeit_session(joined.id, BOB, now=joined.reveal_deadline + timedelta(seconds=1)),
            return_exceptions=True,
        )

        settled = [r for r in results if isinstance(r, SettlementResult)]
        rejected = [r for r in results if not isinstance(r, SettlementResult)]
        assert len(settled) == 1
        assert len(rejected) == 1 and isinstance(rejected[0], SessionOperationError)
        assert await _result_count(db) == 1

        balances = (await balance_of(db, ALICE), await balance_of(db, BOB))
        assert balances in ((1240, 700), (700, 1240))
        for discord_id in (ALICE, BOB):
            assert (await db.verify_balance_integrity(players[discord_id].id))['integrity_check']

    async def test_reveal_racing_housekeeping_settles_once(self, db, players, ops):
        joined = await _joined_game(ops)

        revealed, report = await asyncio.gather(
            ops.reveal_session(joined.id, ALICE, CREATOR_MOVES, SALT, now=joined.reveal_deadline),
            ops.cleanup_stale_sessions(now=joined.reveal_deadline + timedelta(minutes=61)),
            return_exceptions=True,
        )

        assert await _result_count(db) == 1
        if isinstance(revealed, SettlementResult):
            assert report.forfeited == []
            assert await balance_of(db, ALICE) == 1240
        else:
            assert isinstance(revealed, SessionOperationError)
            assert report.forfeited == [joined.id]
            assert await balance_of(db, BOB) == 1240
        assert await balance_of(db, ALICE) + await balance_of(db, BOB) == 1940


class TestCleanup:

    async def test_stale_open_sessions_are_cancelled(self, db, players, ops):
        game = await _open_game(ops)

        report = await ops.cleanup_stale_sessions(now=T0 + timedelta(hours=23))
        assert report.total == 0

        report = await ops.cleanup_stale_sessions(now=T0 + timedelta(hours=25))
        assert report.cancelled == [game.id]
        assert (await db.get_game_session(game.id)).status == SessionStatus.CANCELLED
        assert await balance_of(db, ALICE) == 1000

    async def test_overdue_reveals_are_forfeited_after_grace(self, db, players, ops):
        joined = await _joined_game(ops)

        report = await ops.cleanup_stale_sessions(now=joined.reveal_deadline + timedelta(minutes=30))
        assert report.forfeited == []

        report = await ops.cleanup_stale_sessions(now=joined.reveal_deadline + timedelta(minutes=61))
        assert report.forfeited == [joined.id]
        assert await balance_of(db, BOB) == 1240

        report = await ops.cleanup_stale_sessions(now=joined.reveal_deadline + timedelta(hours=5))
        assert report.total == 0
        assert await balance_of(db, BOB) == 1240


class TestLedger:

    async def test_ledger_matches_cached_balances(self, db, players, ops):
        joined = await _joined_game(ops)
        await ops.reveal_session(joined.id, ALICE, CREATOR_MOVES, SALT, now=T0 + timedelta(minutes=3))
        second = await _open_game(ops, moves='P', rounds=1)
        await ops.cancel_session(second.id, ALICE, now=T0 + timedelta(minutes=4))

        for discord_id in (ALICE, BOB):
            report = await db.verify_balance_integrity(players[discord_id].id)
            assert report['integrity_check'], report

    async def test_currency_is_conserved_apart_from_fees(self, db, players, ops):
        joined = await _joined_game(ops)
        settled = await ops.reveal_session(joined.id, ALICE, CREATOR_MOVES, SALT, now=T0 + timedelta(minutes=3))

        async with db.get_session() as session:
            ledger_total = await session.scalar(select(func.sum(BalanceLedger.change_amount)))

        starting = 1000 * len(players)
        assert ledger_total == starting - settled.result.total_fees
