"""
Weekly rewards commands
"""

import discord
from discord.ext import commands
from discord import app_commands
import logging

from rps_bot.config import Config
from rps_bot.services.weekly_rewards_service import WeeklyRewardsService, WeeklyRewardError
from rps_bot.utils.embeds import build_weekly_embed
from rps_bot.utils.error_embeds import ErrorEmbeds

logger = logging.getLogger(__name__)


class WeeklyCog(commands.Cog):
    """Weekly leaderboard, reward claims and manual distribution."""

    def __init__(self, bot):
        self.bot = bot
        self.weekly_service = WeeklyRewardsService(bot.db.session_factory, bot.db)

    @app_commands.command(name="weekly", description="This week's leaderboard and reward pool")
    async def weekly(self, interaction: discord.Interaction):
        await interaction.response.defer()
        period = await self.weekly_service.get_or_create_current_period()
        leaderboard = await self.weekly_service.build_leaderboard(period.id)
        pool = await self.weekly_service.calculate_pool(period)
        await interaction.followup.send(embed=build_weekly_embed(leaderboard, pool))

    @app_commands.command(name="weekly-claim", description="Claim a weekly reward")
    @app_commands.describe(reward="Reward number (see /balance)")
    async def weekly_claim(self, interaction: discord.Interaction, reward: int):
        await interaction.response.defer(ephemeral=True)
        try:
            claimed = await self.weekly_service.claim_reward(reward, interaction.user.id)
        except WeeklyRewardError as e:
            await interaction.followup.send(embed=ErrorEmbeds.operation_failed(e.user_message), ephemeral=True)
            return
        await interaction.followup.send(
            embed=discord.Embed(
                title="🎉 Reward claimed",
                description=f"{claimed.reward_amount:,} tokens added for rank #{claimed.rank}.",
                color=discord.Color.green()
            ),
            ephemeral=True
        )

    @app_commands.command(
        name="admin-weekly-distribute",
        description="Distribute every finished week's rewards now (Owner only)"
    )
    async def admin_weekly_distribute(self, interaction: discord.Interaction):
        if interaction.user.id != Config.OWNER_DISCORD_ID:
            await interaction.response.send_message(embed=ErrorEmbeds.permission_denied(), ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        summaries = await self.weekly_service.auto_distribute()
        if not summaries:
            description = "No finished weeks waiting for distribution."
        else:
            description = "\n".join(
                f"Period {s.period_id}: pool {s.total_pool:,}, paid {s.distributed:,} "
                f"to {s.winners} player(s), rolled over {s.rollover:,}"
                for s in summaries
            )
        logger.info(f"Manual weekly distribution by {interaction.user.id}: {len(summaries)} period(s)")
        await interaction.followup.send(
            embed=discord.Embed(title="📅 Weekly distribution", description=description, color=discord.Color.blue()),
            ephemeral=True
        )


async def setup(bot):
    await bot.add_cog(WeeklyCog(bot))
