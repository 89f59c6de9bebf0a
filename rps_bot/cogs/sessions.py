"""
Session commands - commit-reveal wagers

/rps-create hashes the creator's moves with a fresh salt and only stores the
digest. The moves and salt are shown to the creator alone (ephemeral) and
must be sent back with /rps-reveal once a challenger has joined.
"""

import discord
from discord.ext import commands
from discord import app_commands
from typing import Optional

from rps_bot.config import Config
from rps_bot.constants import HistoryConstants
from rps_bot.operations.player_operations import PlayerOperations, PlayerOperationError
from rps_bot.operations.session_operations import SessionOperations, SessionOperationError
from rps_bot.services.match_history_service import MatchHistoryService
from rps_bot.utils.commitment import parse_moves, generate_salt, hash_commitment, encode_moves
from rps_bot.utils.embeds import (
    build_session_embed, build_settlement_embed, build_lobby_embed, build_history_embed, format_moves
)
from rps_bot.utils.error_embeds import ErrorEmbeds
from rps_bot.utils.logger import setup_logger

logger = setup_logger(__name__)

ROUND_CHOICES = [app_commands.Choice(name=f"{r} round(s)", value=r) for r in Config.ROUND_OPTIONS]
STAKE_CHOICES = [app_commands.Choice(name=f"{s:,} per round", value=s) for s in Config.STAKE_TIERS]


class SessionsCog(commands.Cog):
    """Create, join, reveal and settle RPS wagers."""

    def __init__(self, bot):
        self.bot = bot
        self.session_ops = SessionOperations(bot.db)
        self.player_ops = PlayerOperations(bot.db)
        self.match_history_service = MatchHistoryService(bot.db.session_factory)

    async def _send_error(self, interaction: discord.Interaction, embed: discord.Embed):
        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=True)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=True)

    async def _ensure_player(self, interaction: discord.Interaction) -> bool:
        try:
            await self.player_ops.get_or_create_player(interaction.user)
            return True
        except PlayerOperationError as e:
            await self._send_error(interaction, ErrorEmbeds.operation_failed(e.user_message))
            return False

    @app_commands.command(name="rps-create", description="Open a Rock-Paper-Scissors wager")
    @app_commands.describe(
        rounds="Number of rounds",
        stake="Stake per round",
        moves="Your moves in order, e.g. RPS or rock,paper,scissors",
        private="Hide the game from the lobby (share the game number yourself)"
    )
    @app_commands.choices(rounds=ROUND_CHOICES, stake=STAKE_CHOICES)
    async def rps_create(self, interaction: discord.Interaction, rounds: int, stake: int,
                         moves: str, private: Optional[bool] = False):
        await interaction.response.defer(ephemeral=True)
        if not await self._ensure_player(interaction):
            return

        try:
            parsed = parse_moves(moves)
        except ValueError as e:
            await self._send_error(interaction, ErrorEmbeds.invalid_input(f"❌ {e}"))
            return
        if len(parsed) != rounds:
            await self._send_error(
                interaction, ErrorEmbeds.invalid_input(f"❌ Enter exactly {rounds} move(s) for a {rounds}-round game.")
            )
            return

        salt = generate_salt()
        commit_hash = hash_commitment(parsed, salt)

        try:
            game = await self.session_ops.create_session(
                interaction.user.id, rounds, stake, commit_hash, is_private=bool(private)
            )
        except SessionOperationError as e:
            await self._send_error(interaction, ErrorEmbeds.operation_failed(e.user_message))
            return

        secret = discord.Embed(
            title=f"🔐 Game #{game.id} created",
            description=(
                "Keep this safe. You need both values to reveal after someone joins.\n\n"
                f"**Moves:** `{encode_moves(parsed)}` {format_moves(parsed)}\n"
                f"**Salt:** `{salt}`\n\n"
                f"Reveal with `/rps-reveal game:{game.id} moves:{encode_moves(parsed)} salt:{salt}`"
            ),
            color=discord.Color.gold()
        )
        await interaction.followup.send(embed=secret, ephemeral=True)

        if not private and interaction.channel is not None:
            await interaction.channel.send(embed=build_session_embed(game, title=f"🎮 New game #{game.id}"))

    @app_commands.command(name="rps-join", description="Join an open wager with your moves")
    @app_commands.describe(game="Game number", moves="Your moves in order, e.g. SPR")
    async def rps_join(self, interaction: discord.Interaction, game: int, moves: str):
        await interaction.response.defer()
        if not await self._ensure_player(interaction):
            return

        try:
            joined = await self.session_ops.join_session(game, interaction.user.id, moves)
        except SessionOperationError as e:
            await self._send_error(interaction, ErrorEmbeds.operation_failed(e.user_message))
            return

        embed = build_session_embed(joined, title=f"⚔️ Game #{joined.id} accepted")
        embed.description = (
            f"<@{joined.creator.discord_id}>, reveal your moves with `/rps-reveal` before the deadline "
            "or the challenger can claim the pot."
        )
        await interaction.followup.send(embed=embed)

    @app_commands.command(name="rps-reveal", description="Reveal your committed moves and settle the game")
    @app_commands.describe(game="Game number", moves="The moves you committed", salt="The salt you were given")
    async def rps_reveal(self, interaction: discord.Interaction, game: int, moves: str, salt: str):
        await interaction.response.defer()
        try:
            settlement = await self.session_ops.reveal_session(game, interaction.user.id, moves, salt.strip())
        except SessionOperationError as e:
            await self._send_error(interaction, ErrorEmbeds.operation_failed(e.user_message))
            return
        await interaction.followup.send(embed=build_settlement_embed(settlement))

    @app_commands.command(name="rps-cancel", description="Cancel your open game and get your stake back")
    @app_commands.describe(game="Game number")
    async def rps_cancel(self, interaction: discord.Interaction, game: int):
        await interaction.response.defer(ephemeral=True)
        try:
            cancelled = await self.session_ops.cancel_session(game, interaction.user.id)
        except SessionOperationError as e:
            await self._send_error(interaction, ErrorEmbeds.operation_failed(e.user_message))
            return
        await interaction.followup.send(
            embed=discord.Embed(
                title=f"Game #{cancelled.id} cancelled",
                description=f"{cancelled.total_stake:,} tokens returned to your balance.",
                color=discord.Color.green()
            ),
            ephemeral=True
        )

    @app_commands.command(name="rps-forfeit", description="Claim the pot when the creator missed the reveal deadline")
    @app_commands.describe(game="Game number")
    async def rps_forfeit(self, interaction: discord.Interaction, game: int):
        await interaction.response.defer()
        try:
            settlement = await self.session_ops.forfeit_session(game, interaction.user.id)
        except SessionOperationError as e:
            await self._send_error(interaction, ErrorEmbeds.operation_failed(e.user_message))
            return
        await interaction.followup.send(embed=build_settlement_embed(settlement))

    @app_commands.command(name="rps-lobby", description="List open games")
    async def rps_lobby(self, interaction: discord.Interaction):
        games = await self.bot.db.get_open_sessions(limit=HistoryConstants.LOBBY_PAGE_SIZE)
        await interaction.response.send_message(embed=build_lobby_embed(games))

    @app_commands.command(name="rps-history", description="Your recent games")
    async def rps_history(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        entries = await self.match_history_service.get_recent_matches(interaction.user.id)
        if not entries:
            await interaction.followup.send(embed=ErrorEmbeds.no_match_history(), ephemeral=True)
            return
        await interaction.followup.send(
            embed=build_history_embed(entries, interaction.user.display_name), ephemeral=True
        )

    @app_commands.command(name="rps-mine", description="Your games still waiting for a challenger")
    async def rps_mine(self, interaction: discord.Interaction):
        games = await self.bot.db.get_sessions_for_creator(interaction.user.id)
        embed = build_lobby_embed(games)
        embed.title = "🎮 Your open games"
        await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(bot):
    await bot.add_cog(SessionsCog(bot))
