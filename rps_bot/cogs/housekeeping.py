"""
Housekeeping Cog - Background Tasks

Expires abandoned games and distributes finished weeks on a timer.
"""

import discord
from discord import app_commands
from discord.ext import commands, tasks
from datetime import datetime, timezone

from rps_bot.config import Config
from rps_bot.operations.session_operations import SessionOperations
from rps_bot.services.weekly_rewards_service import WeeklyRewardsService
from rps_bot.utils.error_embeds import ErrorEmbeds
from rps_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class HousekeepingCog(commands.Cog):
    """Background maintenance and cleanup tasks"""

    def __init__(self, bot):
        self.bot = bot
        self.session_ops = SessionOperations(bot.db)
        self.weekly_service = WeeklyRewardsService(bot.db.session_factory, bot.db)
        self.logger = logger
        self.expire_stale_sessions.change_interval(minutes=Config.HOUSEKEEPING_INTERVAL_MINUTES)

    async def cog_load(self):
        self.expire_stale_sessions.start()
        self.distribute_weekly_rewards.start()
        self.logger.info("HousekeepingCog: Background tasks started")

    async def cog_unload(self):
        """Stop background tasks when cog is unloaded"""
        self.expire_stale_sessions.cancel()
        self.distribute_weekly_rewards.cancel()
        self.logger.info("HousekeepingCog: Background tasks stopped")

    @tasks.loop(minutes=10)
    async def expire_stale_sessions(self):
        """Cancel stale OPEN games and forfeit overdue reveals"""
        try:
            report = await self.session_ops.cleanup_stale_sessions()
            if report.total:
                self.logger.info(
                    f"Expired {len(report.cancelled)} open game(s), auto-forfeited {len(report.forfeited)}"
                )
        except Exception as e:
            self.logger.error(f"Error in session cleanup task: {e}", exc_info=True)

    @tasks.loop(hours=1)
    async def distribute_weekly_rewards(self):
        """Distribute any week that has ended"""
        try:
            summaries = await self.weekly_service.auto_distribute()
            for summary in summaries:
                self.logger.info(
                    f"Auto-distributed period {summary.period_id}: {summary.distributed} paid, "
                    f"{summary.rollover} rolled over"
                )
        except Exception as e:
            self.logger.error(f"Error in weekly distribution task: {e}", exc_info=True)

    @expire_stale_sessions.before_loop
    @distribute_weekly_rewards.before_loop
    async def before_tasks(self):
        """Wait for bot to be ready before starting background tasks"""
        await self.bot.wait_until_ready()

    @app_commands.command(
        name="admin-cleanup-games",
        description="Expire stale games now (Owner only)"
    )
    async def admin_cleanup_games(self, interaction: discord.Interaction):
        if interaction.user.id != Config.OWNER_DISCORD_ID:
            await interaction.response.send_message(embed=ErrorEmbeds.permission_denied(), ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        report = await self.session_ops.cleanup_stale_sessions()

        embed = discord.Embed(
            title="✅ Cleanup Complete",
            description=(
                f"Cancelled **{len(report.cancelled)}** stale open game(s) and forfeited "
                f"**{len(report.forfeited)}** overdue reveal(s)."
            ),
            color=discord.Color.green(),
            timestamp=datetime.now(timezone.utc)
        )
        if report.failed:
            embed.add_field(name="Failed", value=", ".join(f"#{sid}" for sid in report.failed), inline=False)
        if report.total == 0 and not report.failed:
            embed.description = "No stale games found."
            embed.color = discord.Color.blue()

        self.logger.info(
            f"Admin cleanup executed by {interaction.user.id} ({interaction.user.name}): "
            f"{report.total} game(s) settled"
        )
        await interaction.followup.send(embed=embed, ephemeral=True)


async def setup(bot):
    await bot.add_cog(HousekeepingCog(bot))
