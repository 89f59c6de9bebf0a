"""
Player commands - balance, winnings leaderboard and admin grants
"""

import discord
from discord.ext import commands
from discord import app_commands
from typing import Optional
import logging

from rps_bot.config import Config
from rps_bot.operations.player_operations import PlayerOperations, PlayerOperationError
from rps_bot.services.leaderboard import LeaderboardService
from rps_bot.services.weekly_rewards_service import WeeklyRewardsService
from rps_bot.utils.embeds import build_balance_embed, build_leaderboard_embed
from rps_bot.utils.error_embeds import ErrorEmbeds

logger = logging.getLogger(__name__)


class PlayerCog(commands.Cog):
    """Player balance and ranking commands."""

    def __init__(self, bot):
        self.bot = bot
        self.player_ops = PlayerOperations(bot.db)
        self.leaderboard_service = LeaderboardService(bot.db.session_factory)
        self.weekly_service = WeeklyRewardsService(bot.db.session_factory, bot.db)

    @app_commands.command(name="balance", description="Show your token balance and recent activity")
    async def balance(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        try:
            player = await self.player_ops.get_or_create_player(interaction.user)
        except PlayerOperationError as e:
            await interaction.followup.send(embed=ErrorEmbeds.operation_failed(e.user_message), ephemeral=True)
            return

        recent = await self.bot.db.get_ledger_history(player.id, limit=5)
        claimable = await self.weekly_service.get_claimable_rewards(interaction.user.id)
        await interaction.followup.send(embed=build_balance_embed(player, recent, claimable), ephemeral=True)

    @app_commands.command(name="leaderboard", description="Top winners")
    @app_commands.describe(timeframe="Time window")
    @app_commands.choices(timeframe=[
        app_commands.Choice(name="This week", value="week"),
        app_commands.Choice(name="This month", value="month"),
        app_commands.Choice(name="All time", value="all"),
    ])
    @app_commands.checks.cooldown(rate=1, per=5.0, key=lambda i: i.user.id)
    async def leaderboard(self, interaction: discord.Interaction, timeframe: Optional[str] = "all"):
        await interaction.response.defer()
        try:
            page = await self.leaderboard_service.get_leaderboard(timeframe or "all")
        except ValueError as e:
            await interaction.followup.send(embed=ErrorEmbeds.invalid_input(str(e)), ephemeral=True)
            return
        await interaction.followup.send(embed=build_leaderboard_embed(page))

    @app_commands.command(name="admin-grant", description="Grant tokens to a player (Owner only)")
    @app_commands.describe(member="Player to credit", amount="Tokens to add")
    async def admin_grant(self, interaction: discord.Interaction, member: discord.Member,
                          amount: app_commands.Range[int, 1, 10_000_000]):
        if interaction.user.id != Config.OWNER_DISCORD_ID:
            await interaction.response.send_message(embed=ErrorEmbeds.permission_denied(), ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        try:
            await self.player_ops.get_or_create_player(member, update_activity=False)
            player = await self.player_ops.grant_balance(member.id, amount, granted_by=interaction.user.id)
        except PlayerOperationError as e:
            await interaction.followup.send(embed=ErrorEmbeds.operation_failed(e.user_message), ephemeral=True)
            return

        await interaction.followup.send(
            embed=discord.Embed(
                title="✅ Tokens granted",
                description=f"{member.mention} received {amount:,}. New balance: {player.balance:,}",
                color=discord.Color.green()
            ),
            ephemeral=True
        )


async def setup(bot):
    await bot.add_cog(PlayerCog(bot))
