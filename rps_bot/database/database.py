from typing import Optional, List, Any, Dict
from datetime import datetime
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy import select, update, func
from contextlib import asynccontextmanager

from rps_bot.config import Config
from rps_bot.database.models import (
    Base, Player, GameSession, SessionStatus, MatchResult, BalanceLedger, LedgerReason
)
from rps_bot.utils.logger import setup_logger


class InsufficientBalanceError(ValueError):
    """Raised when a debit would take a balance below zero"""

    def __init__(self, player_id: int, required: int, available: Optional[int]):
        super().__init__(f"Insufficient balance for player {player_id}. Need {required}, have {available}")
        self.player_id = player_id
        self.required = required
        self.available = available


class Database:
    """
    Storage collaborator for the settlement core.

    Correctness of the settlement operations relies on two guarantees from
    the engine: every transaction() block commits or rolls back as a unit,
    and conflicting writes to the same row are serialized. SQLite provides
    this through its single-writer lock; server databases through row locks
    taken by the conditional UPDATEs below.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = None
        self.async_session = None

    @property
    def session_factory(self):
        return self.async_session

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        # Convert sqlite URL to async if needed
        database_url = self.database_url
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All writes made through the yielded session commit together on
        success or roll back together when an exception leaves the block.

        Usage:
            async with db.transaction() as session:
                await db.apply_balance_change(..., session=session)
                await db.compare_and_set_status(..., session=session)
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # Player operations
    async def get_player_by_discord_id(self, discord_id: int, session: Optional[AsyncSession] = None) -> Optional[Player]:
        """Get a player by their Discord ID"""
        if session is not None:
            result = await session.execute(select(Player).where(Player.discord_id == discord_id))
            return result.scalar_one_or_none()
        async with self.get_session() as new_session:
            result = await new_session.execute(select(Player).where(Player.discord_id == discord_id))
            return result.scalar_one_or_none()

    async def create_player(self, discord_id: int, username: str, display_name: str = None,
                            session: Optional[AsyncSession] = None) -> Player:
        """Create a new player credited with the starting balance (session-aware)"""
        async def _create(session: AsyncSession) -> Player:
            player = Player(
                discord_id=discord_id,
                username=username,
                display_name=display_name or username,
                balance=0
            )
            session.add(player)
            await session.flush()
            if Config.STARTING_BALANCE > 0:
                await self.apply_balance_change(
                    player.id, Config.STARTING_BALANCE, LedgerReason.STARTING_BALANCE, session
                )
            await session.refresh(player)
            return player

        if session is not None:
            return await _create(session)
        async with self.transaction() as txn_session:
            return await _create(txn_session)

    async def increment_player_stats(self, session: AsyncSession, player_id: int,
                                     wins: int = 0, losses: int = 0, draws: int = 0):
        """Count one finished match for a player"""
        await session.execute(
            update(Player)
            .where(Player.id == player_id)
            .values(
                matches_played=Player.matches_played + 1,
                wins=Player.wins + wins,
                losses=Player.losses + losses,
                draws=Player.draws + draws,
                last_active=func.now()
            )
            .execution_options(synchronize_session=False)
        )

    # ============================================================================
    # Balance operations
    # ============================================================================

    async def apply_balance_change(self, player_id: int, amount: int, reason: LedgerReason,
                                   session: AsyncSession,
                                   session_id: Optional[int] = None,
                                   weekly_reward_id: Optional[int] = None) -> BalanceLedger:
        """
        Apply a relative balance change and record it in the ledger (session-aware).

        The change is a single UPDATE ... SET balance = balance + :amount so
        concurrent transactions never lose each other's updates. Debits carry
        an extra balance >= :required guard and fail without touching the row.

        Raises:
            InsufficientBalanceError: If a debit exceeds the current balance
            ValueError: If the player does not exist
        """
        stmt = update(Player).where(Player.id == player_id)
        if amount < 0:
            stmt = stmt.where(Player.balance >= -amount)
        stmt = stmt.values(balance=Player.balance + amount).execution_options(synchronize_session=False)

        result = await session.execute(stmt)
        if result.rowcount != 1:
            available = await session.scalar(select(Player.balance).where(Player.id == player_id))
            if available is None:
                raise ValueError(f"Player {player_id} not found")
            raise InsufficientBalanceError(player_id, -amount, available)

        balance_after = await session.scalar(select(Player.balance).where(Player.id == player_id))

        ledger_entry = BalanceLedger(
            player_id=player_id,
            change_amount=amount,
            reason=reason,
            balance_after=balance_after,
            session_id=session_id,
            weekly_reward_id=weekly_reward_id
        )
        session.add(ledger_entry)
        await session.flush()

        self.logger.debug(
            f"Balance change for player {player_id}: {amount:+d} ({reason.value}), balance now {balance_after}"
        )
        return ledger_entry

    async def get_player_balance(self, player_id: int) -> int:
        """Get current balance for a player"""
        async with self.get_session() as session:
            result = await session.execute(select(Player.balance).where(Player.id == player_id))
            balance = result.scalar_one_or_none()
            return balance if balance is not None else 0

    async def get_ledger_history(self, player_id: int, limit: int = 20) -> List[BalanceLedger]:
        async with self.get_session() as session:
            result = await session.execute(
                select(BalanceLedger)
                .where(BalanceLedger.player_id == player_id)
                .order_by(BalanceLedger.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def verify_balance_integrity(self, player_id: int) -> Dict[str, Any]:
        """Verify a player's balance against the sum of their ledger entries"""
        async with self.get_session() as session:
            cached_balance = await session.scalar(select(Player.balance).where(Player.id == player_id)) or 0
            calculated_balance = await session.scalar(
                select(func.sum(BalanceLedger.change_amount)).where(BalanceLedger.player_id == player_id)
            ) or 0

            return {
                'player_id': player_id,
                'cached_balance': cached_balance,
                'calculated_balance': calculated_balance,
                'integrity_check': cached_balance == calculated_balance
            }

    # ============================================================================
    # Game session operations
    # ============================================================================

    async def get_game_session(self, session_id: int, session: Optional[AsyncSession] = None) -> Optional[GameSession]:
        """Get a wager session with participants and result loaded"""
        query = (
            select(GameSession)
            .options(
                selectinload(GameSession.creator),
                selectinload(GameSession.challenger),
                selectinload(GameSession.result)
            )
            .where(GameSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        if session is not None:
            result = await session.execute(query)
            return result.scalar_one_or_none()
        async with self.get_session() as new_session:
            result = await new_session.execute(query)
            return result.scalar_one_or_none()

    async def compare_and_set_status(self, session: AsyncSession, session_id: int,
                                     expected: SessionStatus, new_status: SessionStatus,
                                     **values) -> bool:
        """
        Move a session from expected to new_status, updating extra columns.

        Returns False when the row is no longer in the expected status, which
        is how a concurrent transition that lost the race is detected.
        """
        result = await session.execute(
            update(GameSession)
            .where(GameSession.id == session_id, GameSession.status == expected)
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get_stale_session_ids(self, status: SessionStatus, column, cutoff: datetime) -> List[int]:
        """Ids of sessions in status whose timestamp column is older than cutoff"""
        async with self.get_session() as session:
            result = await session.execute(
                select(GameSession.id)
                .where(GameSession.status == status, column < cutoff)
                .order_by(GameSession.id)
            )
            return list(result.scalars().all())

    async def get_open_sessions(self, limit: int = 10, include_private: bool = False) -> List[GameSession]:
        """Lobby: OPEN sessions, newest first"""
        async with self.get_session() as session:
            query = (
                select(GameSession)
                .options(selectinload(GameSession.creator))
                .where(GameSession.status == SessionStatus.OPEN)
            )
            if not include_private:
                query = query.where(GameSession.is_private == False)  # noqa: E712
            query = query.order_by(GameSession.created_at.desc(), GameSession.id.desc()).limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_sessions_for_creator(self, discord_id: int,
                                       status: Optional[SessionStatus] = SessionStatus.OPEN) -> List[GameSession]:
        async with self.get_session() as session:
            query = (
                select(GameSession)
                .options(selectinload(GameSession.creator))
                .join(Player, GameSession.creator_id == Player.id)
                .where(Player.discord_id == discord_id)
            )
            if status is not None:
                query = query.where(GameSession.status == status)
            query = query.order_by(GameSession.created_at.desc(), GameSession.id.desc())
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_match_results_between(self, start: Optional[datetime], end: Optional[datetime],
                                        session: Optional[AsyncSession] = None) -> List[MatchResult]:
        """Match results created in [start, end), with their sessions loaded"""
        query = select(MatchResult).options(selectinload(MatchResult.session))
        if start is not None:
            query = query.where(MatchResult.created_at >= start)
        if end is not None:
            query = query.where(MatchResult.created_at < end)
        query = query.order_by(MatchResult.created_at, MatchResult.id)

        if session is not None:
            result = await session.execute(query)
            return list(result.scalars().all())
        async with self.get_session() as new_session:
            result = await new_session.execute(query)
            return list(result.scalars().all())
