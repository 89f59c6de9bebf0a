"""
Player Operations Module

Converts Discord users into Player records (auto-registration with the
starting balance) and handles admin balance grants.
"""

import discord
from typing import Optional, Union
from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rps_bot.database.models import Player, LedgerReason
from rps_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class PlayerOperationError(Exception):
    """Base exception for player operation errors"""

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or f"❌ {message}"


class PlayerValidationError(PlayerOperationError):
    """Raised when player data validation fails"""
    pass


class PlayerOperations:
    """
    Business logic operations for Player management and Discord integration.
    """

    def __init__(self, database):
        """Initialize with database instance"""
        self.db = database
        self.logger = logger

    async def get_or_create_player(
        self,
        discord_user: Union[discord.User, discord.Member],
        update_activity: bool = True,
        session: Optional[AsyncSession] = None
    ) -> Player:
        """
        Get existing Player or create new one from Discord user.

        New players are credited Config.STARTING_BALANCE with a ledger entry.
        Safe to call for every command invocation.

        Raises:
            PlayerValidationError: If Discord user data is invalid
            PlayerOperationError: If database operation fails
        """
        self._validate_discord_user(discord_user)

        async def _get_or_create(s: AsyncSession) -> Player:
            result = await s.execute(select(Player).where(Player.discord_id == discord_user.id))
            existing_player = result.scalar_one_or_none()

            if existing_player:
                if update_activity:
                    await s.execute(
                        update(Player)
                        .where(Player.id == existing_player.id)
                        .values(last_active=func.now())
                    )
                return existing_player

            player_data = self._extract_player_data(discord_user)
            new_player = await self.db.create_player(
                discord_id=player_data["discord_id"],
                username=player_data["username"],
                display_name=player_data["display_name"],
                session=s
            )
            self.logger.info(
                f"Created new Player {new_player.id} for Discord user {discord_user.id} "
                f"({player_data['display_name']}) with balance {new_player.balance}"
            )
            return new_player

        try:
            if session is not None:
                return await _get_or_create(session)
            async with self.db.transaction() as s:
                return await _get_or_create(s)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get/create Player for Discord user {discord_user.id}: {e}")
            raise PlayerOperationError(f"Database error in get_or_create_player: {e}") from e

    async def grant_balance(self, discord_id: int, amount: int, granted_by: int) -> Player:
        """
        Credit a player's balance (admin only; the caller checks permissions).

        Raises:
            PlayerValidationError: Non-positive amount or unknown player
        """
        if amount <= 0:
            raise PlayerValidationError(f"Grant amount must be positive, got {amount}")

        try:
            async with self.db.transaction() as session:
                player = await self.db.get_player_by_discord_id(discord_id, session=session)
                if player is None:
                    raise PlayerValidationError(
                        f"No player registered for Discord user {discord_id}",
                        "❌ That user has no player profile yet."
                    )
                entry = await self.db.apply_balance_change(player.id, amount, LedgerReason.ADMIN_GRANT, session)
                await session.refresh(player)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to grant {amount} to Discord user {discord_id}: {e}")
            raise PlayerOperationError(f"Database error in grant_balance: {e}") from e

        self.logger.info(
            f"Admin {granted_by} granted {amount} to Player {player.id}, balance now {entry.balance_after}"
        )
        return player

    def _validate_discord_user(self, discord_user: Union[discord.User, discord.Member]) -> None:
        """Validate Discord user data for Player creation"""
        if not discord_user:
            raise PlayerValidationError("Discord user is None")

        if not discord_user.id:
            raise PlayerValidationError("Discord user has no ID")

        if discord_user.bot:
            raise PlayerValidationError(f"Discord user {discord_user.id} is a bot", "❌ Bots can't play.")

        if not discord_user.name or len(discord_user.name.strip()) == 0:
            raise PlayerValidationError(f"Discord user {discord_user.id} has invalid username")

    def _extract_player_data(self, discord_user: Union[discord.User, discord.Member]) -> dict:
        """Extract Player creation data from Discord user"""
        display_name = discord_user.display_name or discord_user.name

        if len(display_name) > 100:
            display_name = display_name[:97] + "..."

        return {
            "discord_id": discord_user.id,
            "username": discord_user.name[:100],
            "display_name": display_name
        }
