from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, JSON,
    ForeignKey, BigInteger, Enum as SQLEnum, UniqueConstraint, CheckConstraint
)
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from enum import Enum
from typing import Optional, List

Base = declarative_base()

class Move(Enum):
    ROCK = "R"
    PAPER = "P"
    SCISSORS = "S"

class SessionStatus(Enum):
    OPEN = "open"
    AWAITING_REVEAL = "awaiting_reveal"
    RESOLVED = "resolved"
    FORFEITED = "forfeited"
    CANCELLED = "cancelled"

class Outcome(Enum):
    """Overall result of a settled session"""
    CREATOR = "creator"
    CHALLENGER = "challenger"
    DRAW = "draw"

class RoundWinner(Enum):
    CREATOR = "creator"
    CHALLENGER = "challenger"
    DRAW = "draw"

class LedgerReason(Enum):
    STARTING_BALANCE = "starting_balance"
    SESSION_ESCROW = "session_escrow"
    SESSION_REFUND = "session_refund"
    MATCH_PAYOUT = "match_payout"
    DRAW_REFUND = "draw_refund"
    FORFEIT_PAYOUT = "forfeit_payout"
    WEEKLY_REWARD = "weekly_reward"
    ADMIN_GRANT = "admin_grant"


def moves_to_column(moves: Optional[List[Move]]) -> Optional[str]:
    """Store an ordered move list as 'R,P,S'"""
    if moves is None:
        return None
    return ",".join(move.value for move in moves)


def moves_from_column(value: Optional[str]) -> Optional[List[Move]]:
    if not value:
        return None
    return [Move(part) for part in value.split(",")]


class Player(Base):
    __tablename__ = 'players'

    id = Column(Integer, primary_key=True)
    discord_id = Column(BigInteger, unique=True, nullable=False, index=True)
    username = Column(String(100), nullable=False)
    display_name = Column(String(100))

    # Mock escrow balance (whole tokens, never negative)
    balance = Column(Integer, nullable=False, default=0)

    matches_played = Column(Integer, default=0)
    wins = Column(Integer, default=0)
    losses = Column(Integer, default=0)
    draws = Column(Integer, default=0)

    # Metadata
    registered_at = Column(DateTime, default=func.now())
    last_active = Column(DateTime, default=func.now())
    is_active = Column(Boolean, default=True)

    ledger_entries = relationship("BalanceLedger", back_populates="player", cascade="all, delete-orphan")

    __table_args__ = (CheckConstraint('balance >= 0', name='ck_player_balance_non_negative'),)

    @property
    def win_rate(self) -> float:
        if not self.matches_played:
            return 0.0
        return (self.wins / self.matches_played) * 100

    def __repr__(self):
        return f"<Player(discord_id={self.discord_id}, username='{self.username}', balance={self.balance})>"

class GameSession(Base):
    """
    A proposed wager between a creator and (eventually) one challenger.

    The creator only ever publishes commit_hash until reveal; creator_moves
    stays NULL until the commitment has been verified.
    """
    __tablename__ = 'game_sessions'

    id = Column(Integer, primary_key=True)
    status = Column(SQLEnum(SessionStatus), nullable=False, default=SessionStatus.OPEN, index=True)

    # Stake structure
    rounds = Column(Integer, nullable=False)
    stake_per_round = Column(Integer, nullable=False)
    total_stake = Column(Integer, nullable=False)

    # Participants
    creator_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    challenger_id = Column(Integer, ForeignKey('players.id'), nullable=True, index=True)

    # Commit-reveal data
    commit_hash = Column(String(64), nullable=False)
    creator_moves = Column(String(20), nullable=True)
    challenger_moves = Column(String(20), nullable=True)
    reveal_deadline = Column(DateTime, nullable=False)

    is_private = Column(Boolean, default=False)

    # Timing
    created_at = Column(DateTime, default=func.now(), index=True)
    joined_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    creator = relationship("Player", foreign_keys=[creator_id])
    challenger = relationship("Player", foreign_keys=[challenger_id])
    result = relationship("MatchResult", back_populates="session", uselist=False)

    __table_args__ = (
        CheckConstraint('total_stake = rounds * stake_per_round', name='ck_session_total_stake'),
        CheckConstraint('rounds > 0', name='ck_session_rounds_positive'),
    )

    @property
    def creator_move_list(self) -> Optional[List[Move]]:
        return moves_from_column(self.creator_moves)

    @property
    def challenger_move_list(self) -> Optional[List[Move]]:
        return moves_from_column(self.challenger_moves)

    @property
    def is_terminal(self) -> bool:
        return self.status in (SessionStatus.RESOLVED, SessionStatus.FORFEITED, SessionStatus.CANCELLED)

    def __repr__(self):
        return (
            f"<GameSession(id={self.id}, status={self.status.value if self.status else None}, "
            f"rounds={self.rounds}, stake={self.stake_per_round})>"
        )

class MatchResult(Base):
    """Immutable settlement record, written in the same transaction that settles the session"""
    __tablename__ = 'match_results'

    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey('game_sessions.id'), nullable=False, unique=True)

    # [{"round": 1, "creator_move": "R", "challenger_move": "S", "winner": "creator"}, ...]
    rounds_outcome = Column(JSON, nullable=False, default=list)
    creator_wins = Column(Integer, nullable=False, default=0)
    challenger_wins = Column(Integer, nullable=False, default=0)
    draws = Column(Integer, nullable=False, default=0)
    overall = Column(SQLEnum(Outcome), nullable=False)
    by_forfeit = Column(Boolean, nullable=False, default=False)

    # Money
    pot = Column(Integer, nullable=False)
    fees_treasury = Column(Integer, nullable=False, default=0)
    fees_burn = Column(Integer, nullable=False, default=0)
    payout_winner = Column(Integer, nullable=False, default=0)
    winner_player_id = Column(Integer, ForeignKey('players.id'), nullable=True, index=True)

    created_at = Column(DateTime, default=func.now(), index=True)

    session = relationship("GameSession", back_populates="result")
    winner = relationship("Player", foreign_keys=[winner_player_id])

    @property
    def total_fees(self) -> int:
        return self.fees_treasury + self.fees_burn

    def __repr__(self):
        return f"<MatchResult(session_id={self.session_id}, overall={self.overall.value}, payout={self.payout_winner})>"

class BalanceLedger(Base):
    """
    Append-only audit trail of balance changes.

    balance_after is read back inside the same transaction as the change.
    """
    __tablename__ = 'balance_ledger'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)

    change_amount = Column(Integer, nullable=False)  # Positive for credits, negative for debits
    reason = Column(SQLEnum(LedgerReason), nullable=False)
    balance_after = Column(Integer, nullable=False)

    session_id = Column(Integer, ForeignKey('game_sessions.id'), nullable=True)
    weekly_reward_id = Column(Integer, ForeignKey('weekly_rewards.id'), nullable=True)

    timestamp = Column(DateTime, default=func.now())

    player = relationship("Player", back_populates="ledger_entries")

    def __repr__(self):
        return f"<BalanceLedger(player_id={self.player_id}, amount={self.change_amount}, reason='{self.reason.value}')>"

class WeeklyPeriod(Base):
    __tablename__ = 'weekly_periods'

    id = Column(Integer, primary_key=True)
    week_start = Column(DateTime, nullable=False, unique=True)  # Monday 00:00 UTC
    week_end = Column(DateTime, nullable=False)                 # Following Monday 00:00 UTC

    rollover_pool = Column(Integer, nullable=False, default=0)       # Carried in from the previous week
    total_rewards_pool = Column(Integer, nullable=False, default=0)  # Fixed at distribution time
    total_matches = Column(Integer, nullable=False, default=0)

    is_distributed = Column(Boolean, nullable=False, default=False)
    distributed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())

    rewards = relationship("WeeklyReward", back_populates="weekly_period", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<WeeklyPeriod(week_start={self.week_start}, distributed={self.is_distributed})>"

class WeeklyReward(Base):
    __tablename__ = 'weekly_rewards'

    id = Column(Integer, primary_key=True)
    weekly_period_id = Column(Integer, ForeignKey('weekly_periods.id'), nullable=False, index=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)

    rank = Column(Integer, nullable=False)
    points = Column(Integer, nullable=False)
    reward_amount = Column(Integer, nullable=False)

    is_claimed = Column(Boolean, nullable=False, default=False)
    claimed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())

    weekly_period = relationship("WeeklyPeriod", back_populates="rewards")
    player = relationship("Player")

    __table_args__ = (UniqueConstraint('weekly_period_id', 'player_id', name='uq_weekly_reward_player'),)

    def __repr__(self):
        return f"<WeeklyReward(period={self.weekly_period_id}, player={self.player_id}, rank={self.rank}, amount={self.reward_amount})>"
