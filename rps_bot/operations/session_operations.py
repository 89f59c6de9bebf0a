"""
Session Operations Module

Commit-reveal wager lifecycle:

    OPEN -> AWAITING_REVEAL -> RESOLVED | FORFEITED
    OPEN -> CANCELLED

Every public operation runs in a single Database.transaction(). The status
flip is a compare-and-set UPDATE, so when two callers race on the same
session exactly one wins and the other gets a SessionStateError. Balances
only move through Database.apply_balance_change (relative UPDATE + ledger).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, List, Sequence, Union, Callable, Awaitable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rps_bot.config import Config
from rps_bot.database.database import InsufficientBalanceError
from rps_bot.database.models import (
    GameSession, SessionStatus, MatchResult, Move, Outcome, LedgerReason, Player,
    moves_to_column
)
from rps_bot.utils.commitment import parse_moves, verify_commitment, is_valid_commit_hash
from rps_bot.utils.payout import calc_total_stake, calc_pot, payout_from_pot
from rps_bot.utils.rps import tally_outcome, TallyResult
from rps_bot.utils.time_utils import to_naive_utc
from rps_bot.utils.logger import setup_logger

logger = setup_logger(__name__)

T = TypeVar('T')
MoveInput = Union[str, Sequence[Union[str, Move]]]


class SessionOperationError(Exception):
    """Base exception for session operation errors"""

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or f"❌ {message}"


class SessionValidationError(SessionOperationError):
    """Raised when input is malformed or out of range"""
    pass


class SessionNotFoundError(SessionOperationError):
    """Raised when a session id does not exist"""

    def __init__(self, session_id: int):
        super().__init__(f"Session {session_id} not found", f"❌ Game #{session_id} does not exist.")
        self.session_id = session_id


class SessionStateError(SessionOperationError):
    """Raised when the session is in the wrong state for the operation"""
    pass


class InsufficientFundsError(SessionOperationError):
    """Raised when a balance cannot cover the stake"""

    def __init__(self, required: int, available: Optional[int]):
        super().__init__(
            f"Insufficient balance: need {required}, have {available}",
            f"❌ You need {required:,} tokens for this stake but only have {available or 0:,}."
        )
        self.required = required
        self.available = available


class CommitmentMismatchError(SessionOperationError):
    """Raised when revealed moves and salt do not reproduce the commitment"""

    def __init__(self, session_id: int):
        super().__init__(
            f"Commitment mismatch for session {session_id}",
            "❌ Those moves and salt do not match your commitment. The game stays open for reveal."
        )
        self.session_id = session_id


class SessionIntegrityError(SessionOperationError):
    """Raised when stored session data is unusable"""
    pass


@dataclass
class SettlementResult:
    """A settled session together with its result row"""
    session: GameSession
    result: MatchResult
    tally: Optional[TallyResult] = None

    @property
    def outcome(self) -> Outcome:
        return self.result.overall

    @property
    def is_draw(self) -> bool:
        return self.result.overall == Outcome.DRAW


@dataclass
class CleanupReport:
    cancelled: List[int] = field(default_factory=list)
    forfeited: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.cancelled) + len(self.forfeited)


class SessionOperations:
    """
    Settlement state machine for wager sessions.

    Identity is always passed in explicitly as a Discord user id.
    """

    def __init__(self, database):
        self.db = database
        self.logger = logger

    async def _run_transaction(self, operation: str, op: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run op in one transaction, mapping storage failures to SessionOperationError"""
        try:
            async with self.db.transaction() as session:
                return await op(session)
        except SessionOperationError as e:
            self.logger.warning(f"{operation} rejected: {e}")
            raise
        except SQLAlchemyError as e:
            self.logger.error(f"Database error in {operation}: {e}")
            raise SessionOperationError(
                f"Database error in {operation}: {e}",
                "❌ Database error occurred. Please try again later."
            ) from e

    # ============================================================================
    # Validation helpers
    # ============================================================================

    def _validate_stake(self, rounds: int, stake_per_round: int) -> None:
        if rounds not in Config.ROUND_OPTIONS:
            raise SessionValidationError(
                f"Unsupported rounds {rounds}",
                f"❌ Rounds must be one of {', '.join(str(r) for r in Config.ROUND_OPTIONS)}."
            )
        if stake_per_round not in Config.STAKE_TIERS:
            raise SessionValidationError(
                f"Unsupported stake tier {stake_per_round}",
                f"❌ Stake per round must be one of {', '.join(str(s) for s in Config.STAKE_TIERS)}."
            )

    def _parse_moves(self, raw: MoveInput) -> List[Move]:
        try:
            return parse_moves(raw)
        except ValueError as e:
            raise SessionValidationError(str(e), f"❌ {e}") from e

    def _require_move_count(self, moves: List[Move], game: GameSession, action: str) -> None:
        if len(moves) != game.rounds:
            raise SessionValidationError(
                f"Expected {game.rounds} moves, got {len(moves)}",
                f"❌ This game has {game.rounds} round(s); {action} exactly {game.rounds} move(s)."
            )

    async def _require_player(self, session: AsyncSession, discord_id: int) -> Player:
        player = await self.db.get_player_by_discord_id(discord_id, session=session)
        if player is None:
            raise SessionValidationError(
                f"No player registered for Discord user {discord_id}",
                "❌ You don't have a player profile yet."
            )
        return player

    async def _require_session(self, session: AsyncSession, session_id: int) -> GameSession:
        game = await self.db.get_game_session(session_id, session=session)
        if game is None:
            raise SessionNotFoundError(session_id)
        return game

    def _require_status(self, game: GameSession, expected: SessionStatus) -> None:
        if game.status != expected:
            raise SessionStateError(
                f"Session {game.id} is {game.status.value}, expected {expected.value}",
                f"❌ Game #{game.id} is {game.status.value.replace('_', ' ')}."
            )

    async def _compare_and_set(self, session: AsyncSession, game: GameSession,
                               expected: SessionStatus, new_status: SessionStatus, **values) -> None:
        changed = await self.db.compare_and_set_status(session, game.id, expected, new_status, **values)
        if not changed:
            raise SessionStateError(
                f"Session {game.id} left {expected.value} before {new_status.value} could be applied",
                f"❌ Game #{game.id} was updated by someone else. Please check its status."
            )

    async def _debit(self, session: AsyncSession, player: Player, amount: int, session_id: int) -> None:
        try:
            await self.db.apply_balance_change(
                player.id, -amount, LedgerReason.SESSION_ESCROW, session, session_id=session_id
            )
        except InsufficientBalanceError as e:
            raise InsufficientFundsError(e.required, e.available) from e

    # ============================================================================
    # Transitions
    # ============================================================================

    async def create_session(self, creator_discord_id: int, rounds: int, stake_per_round: int,
                             commit_hash: str, is_private: bool = False,
                             now: Optional[datetime] = None) -> GameSession:
        """
        Open a new wager and escrow the creator's stake.

        Args:
            creator_discord_id: Discord id of the creator
            rounds: Number of rounds (Config.ROUND_OPTIONS)
            stake_per_round: Stake per round (Config.STAKE_TIERS)
            commit_hash: sha256 hex digest of "moves|salt"
            is_private: Hide from the lobby
            now: Override the current time (UTC)

        Returns:
            The OPEN GameSession

        Raises:
            SessionValidationError: Bad tier, rounds or digest
            InsufficientFundsError: Creator balance below the total stake
        """
        self._validate_stake(rounds, stake_per_round)
        if not commit_hash or not is_valid_commit_hash(commit_hash):
            raise SessionValidationError(
                "Commitment must be a 64 character hex sha256 digest",
                "❌ Invalid commitment hash."
            )
        now = to_naive_utc(now)
        total_stake = calc_total_stake(rounds, stake_per_round)

        async def _create(session: AsyncSession) -> GameSession:
            creator = await self._require_player(session, creator_discord_id)
            game = GameSession(
                status=SessionStatus.OPEN,
                rounds=rounds,
                stake_per_round=stake_per_round,
                total_stake=total_stake,
                creator_id=creator.id,
                commit_hash=commit_hash.lower(),
                reveal_deadline=now + timedelta(seconds=Config.REVEAL_DEADLINE_SECONDS),
                is_private=is_private,
                created_at=now
            )
            session.add(game)
            await session.flush()

            await self._debit(session, creator, total_stake, game.id)

            self.logger.info(
                f"Session {game.id} created by {creator_discord_id}: {rounds} round(s) x {stake_per_round}, "
                f"escrowed {total_stake}"
            )
            return await self._require_session(session, game.id)

        return await self._run_transaction("create_session", _create)

    async def cancel_session(self, session_id: int, caller_discord_id: int,
                             now: Optional[datetime] = None) -> GameSession:
        """
        Cancel an OPEN session and refund the creator (creator only).

        A second cancel finds the session CANCELLED and is rejected, so the
        refund can only ever happen once.
        """
        now = to_naive_utc(now)

        async def _cancel(session: AsyncSession) -> GameSession:
            game = await self._require_session(session, session_id)
            if game.creator.discord_id != caller_discord_id:
                raise SessionStateError(
                    f"User {caller_discord_id} is not the creator of session {session_id}",
                    "❌ Only the creator can cancel this game."
                )
            self._require_status(game, SessionStatus.OPEN)
            return await self._settle_cancel(session, game, now)

        return await self._run_transaction("cancel_session", _cancel)

    async def _settle_cancel(self, session: AsyncSession, game: GameSession, now: datetime) -> GameSession:
        await self._compare_and_set(session, game, SessionStatus.OPEN, SessionStatus.CANCELLED, resolved_at=now)
        await self.db.apply_balance_change(
            game.creator_id, game.total_stake, LedgerReason.SESSION_REFUND, session, session_id=game.id
        )
        self.logger.info(f"Session {game.id} cancelled, refunded {game.total_stake} to player {game.creator_id}")
        return await self._require_session(session, game.id)

    async def join_session(self, session_id: int, challenger_discord_id: int,
                           challenger_moves: MoveInput,
                           now: Optional[datetime] = None) -> GameSession:
        """
        Join an OPEN session with plaintext moves and escrow the challenger's stake.

        The reveal deadline is reset to now + REVEAL_DEADLINE_SECONDS, or kept
        if that is already later.

        Raises:
            SessionStateError: Session not OPEN, or the challenger is the creator
            SessionValidationError: Wrong move count or invalid moves
            InsufficientFundsError: Challenger balance below the total stake
        """
        now = to_naive_utc(now)
        moves = self._parse_moves(challenger_moves)

        async def _join(session: AsyncSession) -> GameSession:
            game = await self._require_session(session, session_id)
            self._require_status(game, SessionStatus.OPEN)
            challenger = await self._require_player(session, challenger_discord_id)
            if challenger.id == game.creator_id:
                raise SessionStateError(
                    f"User {challenger_discord_id} tried to join own session {session_id}",
                    "❌ You can't join your own game."
                )
            self._require_move_count(moves, game, "submit")

            deadline = max(game.reveal_deadline, now + timedelta(seconds=Config.REVEAL_DEADLINE_SECONDS))
            await self._compare_and_set(
                session, game, SessionStatus.OPEN, SessionStatus.AWAITING_REVEAL,
                challenger_id=challenger.id,
                challenger_moves=moves_to_column(moves),
                joined_at=now,
                reveal_deadline=deadline
            )
            await self._debit(session, challenger, game.total_stake, game.id)

            self.logger.info(
                f"Session {game.id} joined by {challenger_discord_id}, escrowed {game.total_stake}, "
                f"reveal deadline {deadline.isoformat()}"
            )
            return await self._require_session(session, game.id)

        return await self._run_transaction("join_session", _join)

    async def reveal_session(self, session_id: int, caller_discord_id: int, moves: MoveInput,
                             salt: str, now: Optional[datetime] = None) -> SettlementResult:
        """
        Reveal the creator's moves and settle the session.

        On a commitment mismatch nothing changes: both stakes stay escrowed
        until a correct reveal or a forfeit after the deadline.

        Raises:
            SessionStateError: Not the creator, not AWAITING_REVEAL, or deadline passed
            SessionValidationError: Invalid moves or empty salt
            CommitmentMismatchError: Moves and salt do not match the commitment
            SessionIntegrityError: Challenger moves are missing
        """
        now = to_naive_utc(now)
        creator_moves = self._parse_moves(moves)
        if not salt:
            raise SessionValidationError("Salt is required", "❌ You must provide the salt from game creation.")

        async def _reveal(session: AsyncSession) -> SettlementResult:
            game = await self._require_session(session, session_id)
            if game.creator.discord_id != caller_discord_id:
                raise SessionStateError(
                    f"User {caller_discord_id} is not the creator of session {session_id}",
                    "❌ Only the creator can reveal this game."
                )
            self._require_status(game, SessionStatus.AWAITING_REVEAL)
            if now > game.reveal_deadline:
                raise SessionStateError(
                    f"Reveal deadline for session {session_id} passed at {game.reveal_deadline.isoformat()}",
                    "❌ The reveal deadline has passed. The challenger can now claim a forfeit."
                )
            self._require_move_count(creator_moves, game, "reveal")
            if not verify_commitment(game.commit_hash, creator_moves, salt):
                raise CommitmentMismatchError(session_id)

            challenger_moves = game.challenger_move_list
            if game.challenger_id is None or not challenger_moves or len(challenger_moves) != game.rounds:
                raise SessionIntegrityError(
                    f"Session {session_id} has no usable challenger moves",
                    "❌ This game's stored data is inconsistent. Please contact an admin."
                )

            tally = tally_outcome(creator_moves, challenger_moves)
            await self._compare_and_set(
                session, game, SessionStatus.AWAITING_REVEAL, SessionStatus.RESOLVED,
                creator_moves=moves_to_column(creator_moves),
                resolved_at=now
            )

            pot = calc_pot(game.rounds, game.stake_per_round)
            if tally.overall == Outcome.DRAW:
                for player_id in (game.creator_id, game.challenger_id):
                    await self.db.apply_balance_change(
                        player_id, game.total_stake, LedgerReason.DRAW_REFUND, session, session_id=game.id
                    )
                fees_treasury = fees_burn = payout_winner = 0
                winner_id = None
                await self.db.increment_player_stats(session, game.creator_id, draws=1)
                await self.db.increment_player_stats(session, game.challenger_id, draws=1)
            else:
                payout = payout_from_pot(pot)
                fees_treasury, fees_burn, payout_winner = payout.fees_treasury, payout.fees_burn, payout.payout_winner
                if tally.overall == Outcome.CREATOR:
                    winner_id, loser_id = game.creator_id, game.challenger_id
                else:
                    winner_id, loser_id = game.challenger_id, game.creator_id
                await self.db.apply_balance_change(
                    winner_id, payout_winner, LedgerReason.MATCH_PAYOUT, session, session_id=game.id
                )
                await self.db.increment_player_stats(session, winner_id, wins=1)
                await self.db.increment_player_stats(session, loser_id, losses=1)

            session.add(MatchResult(
                session_id=game.id,
                rounds_outcome=[outcome.to_dict() for outcome in tally.outcomes],
                creator_wins=tally.creator_wins,
                challenger_wins=tally.challenger_wins,
                draws=tally.draws,
                overall=tally.overall,
                by_forfeit=False,
                pot=pot,
                fees_treasury=fees_treasury,
                fees_burn=fees_burn,
                payout_winner=payout_winner,
                winner_player_id=winner_id,
                created_at=now
            ))
            await session.flush()

            self.logger.info(
                f"Session {game.id} resolved {tally.creator_wins}-{tally.challenger_wins} "
                f"({tally.overall.value}), pot {pot}, payout {payout_winner}, "
                f"fees {fees_treasury}+{fees_burn}"
            )
            settled = await self._require_session(session, game.id)
            return SettlementResult(session=settled, result=settled.result, tally=tally)

        return await self._run_transaction("reveal_session", _reveal)

    async def forfeit_session(self, session_id: int, caller_discord_id: int,
                              now: Optional[datetime] = None) -> SettlementResult:
        """
        Claim the pot after the creator failed to reveal in time (challenger only).

        Raises:
            SessionStateError: Not the challenger, not AWAITING_REVEAL, or deadline not reached
        """
        now = to_naive_utc(now)

        async def _forfeit(session: AsyncSession) -> SettlementResult:
            game = await self._require_session(session, session_id)
            self._require_status(game, SessionStatus.AWAITING_REVEAL)
            if game.challenger is None or game.challenger.discord_id != caller_discord_id:
                raise SessionStateError(
                    f"User {caller_discord_id} is not the challenger of session {session_id}",
                    "❌ Only the challenger can claim a forfeit."
                )
            if now <= game.reveal_deadline:
                raise SessionStateError(
                    f"Reveal deadline for session {session_id} not reached",
                    f"❌ The creator still has until <t:{_unix(game.reveal_deadline)}:R> to reveal."
                )
            return await self._settle_forfeit(session, game, now)

        return await self._run_transaction("forfeit_session", _forfeit)

    async def _settle_forfeit(self, session: AsyncSession, game: GameSession, now: datetime) -> SettlementResult:
        await self._compare_and_set(
            session, game, SessionStatus.AWAITING_REVEAL, SessionStatus.FORFEITED, resolved_at=now
        )
        pot = calc_pot(game.rounds, game.stake_per_round)
        payout = payout_from_pot(pot)
        await self.db.apply_balance_change(
            game.challenger_id, payout.payout_winner, LedgerReason.FORFEIT_PAYOUT, session, session_id=game.id
        )
        await self.db.increment_player_stats(session, game.challenger_id, wins=1)
        await self.db.increment_player_stats(session, game.creator_id, losses=1)

        session.add(MatchResult(
            session_id=game.id,
            rounds_outcome=[],
            creator_wins=0,
            challenger_wins=0,
            draws=0,
            overall=Outcome.CHALLENGER,
            by_forfeit=True,
            pot=pot,
            fees_treasury=payout.fees_treasury,
            fees_burn=payout.fees_burn,
            payout_winner=payout.payout_winner,
            winner_player_id=game.challenger_id,
            created_at=now
        ))
        await session.flush()

        self.logger.info(
            f"Session {game.id} forfeited to player {game.challenger_id}, payout {payout.payout_winner}"
        )
        settled = await self._require_session(session, game.id)
        return SettlementResult(session=settled, result=settled.result)

    # ============================================================================
    # Housekeeping
    # ============================================================================

    async def cleanup_stale_sessions(self, now: Optional[datetime] = None) -> CleanupReport:
        """
        Expire abandoned sessions.

        OPEN sessions older than OPEN_SESSION_TTL_HOURS are cancelled with a
        refund. AWAITING_REVEAL sessions more than FORFEIT_GRACE_MINUTES past
        their deadline are forfeited to the challenger. Each session settles
        in its own transaction; one failure does not stop the rest.
        """
        now = to_naive_utc(now)
        report = CleanupReport()

        open_cutoff = now - timedelta(hours=Config.OPEN_SESSION_TTL_HOURS)
        stale_open = await self.db.get_stale_session_ids(SessionStatus.OPEN, GameSession.created_at, open_cutoff)
        for session_id in stale_open:
            async def _expire(session: AsyncSession, session_id=session_id):
                game = await self._require_session(session, session_id)
                return await self._settle_cancel(session, game, now)
            try:
                await self._run_transaction("cleanup_stale_sessions", _expire)
                report.cancelled.append(session_id)
            except SessionOperationError:
                report.failed.append(session_id)

        reveal_cutoff = now - timedelta(minutes=Config.FORFEIT_GRACE_MINUTES)
        overdue = await self.db.get_stale_session_ids(
            SessionStatus.AWAITING_REVEAL, GameSession.reveal_deadline, reveal_cutoff
        )
        for session_id in overdue:
            async def _auto_forfeit(session: AsyncSession, session_id=session_id):
                game = await self._require_session(session, session_id)
                return await self._settle_forfeit(session, game, now)
            try:
                await self._run_transaction("cleanup_stale_sessions", _auto_forfeit)
                report.forfeited.append(session_id)
            except SessionOperationError:
                report.failed.append(session_id)

        if report.total or report.failed:
            self.logger.info(
                f"Housekeeping: cancelled {len(report.cancelled)}, forfeited {len(report.forfeited)}, "
                f"failed {len(report.failed)}"
            )
        return report


def _unix(value: datetime) -> int:
    return int((value - datetime(1970, 1, 1)).total_seconds())
