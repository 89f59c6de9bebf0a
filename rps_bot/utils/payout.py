"""
Pot, fee and payout arithmetic.

All amounts are non-negative integers. Fees use floor rounding and burn is
derived as the remainder of the total fee, so
fees_treasury + fees_burn + payout_winner == pot for every pot.
"""

from dataclasses import dataclass
from typing import List, Optional

from rps_bot.config import Config
from rps_bot.constants import GameConstants, WeeklyConstants


@dataclass(frozen=True)
class FeeBreakdown:
    total: int
    treasury: int
    burn: int


@dataclass(frozen=True)
class Payout:
    pot: int
    fees_treasury: int
    fees_burn: int
    payout_winner: int

    @property
    def total_fees(self) -> int:
        return self.fees_treasury + self.fees_burn


def calc_total_stake(rounds: int, stake_per_round: int) -> int:
    return rounds * stake_per_round


def calc_pot(rounds: int, stake_per_round: int) -> int:
    """Both sides stake rounds * stake_per_round"""
    return calc_total_stake(rounds, stake_per_round) * 2


def calc_fees(pot: int, total_bps: Optional[int] = None, treasury_bps: Optional[int] = None) -> FeeBreakdown:
    total_bps = Config.TOTAL_FEE_BPS if total_bps is None else total_bps
    treasury_bps = Config.TREASURY_FEE_BPS if treasury_bps is None else treasury_bps
    Config.validate_fee_schedule(total_bps, treasury_bps)
    if pot < 0:
        raise ValueError(f"Pot must be non-negative, got {pot}")

    total = pot * total_bps // GameConstants.BPS_DENOMINATOR
    treasury = pot * treasury_bps // GameConstants.BPS_DENOMINATOR
    return FeeBreakdown(total=total, treasury=treasury, burn=total - treasury)


def payout_from_pot(pot: int, total_bps: Optional[int] = None, treasury_bps: Optional[int] = None) -> Payout:
    fees = calc_fees(pot, total_bps, treasury_bps)
    return Payout(
        pot=pot,
        fees_treasury=fees.treasury,
        fees_burn=fees.burn,
        payout_winner=pot - fees.total,
    )


def calculate_weekly_reward_distribution(total_pool: int) -> List[int]:
    """Reward per rank (index 0 is first place), floored per rank"""
    if total_pool < 0:
        raise ValueError(f"Reward pool must be non-negative, got {total_pool}")
    return [total_pool * percentage // 100 for percentage in WeeklyConstants.REWARD_DISTRIBUTION]
