"""
Services package for the RPS Escrow Arena bot.

Read-mostly services built on BaseService and the async session factory.
"""

from .base import BaseService
from .leaderboard import LeaderboardService
from .match_history_service import MatchHistoryService
from .weekly_rewards_service import WeeklyRewardsService

__all__ = ['BaseService', 'LeaderboardService', 'MatchHistoryService', 'WeeklyRewardsService']
