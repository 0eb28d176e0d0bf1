"""
Rewards calculation service.
Turns a habit's base reward into minutes of time currency.
"""
import math
from typing import Optional

from timebank.constants import STREAK_MULTIPLIERS


class RewardsService:
    """Service for reward calculation"""

    @staticmethod
    def calculate_reward_amount(
        base_reward: int,
        streak: Optional[float] = None,
        combo: Optional[float] = None,
        time: Optional[float] = None,
        verification: Optional[float] = None
    ) -> int:
        """
        Calculate minutes earned for a completion.

        Formula: Reward = floor(Base × Streak × Combo × Time × Verification)
        Multipliers that are not given count as 1.

        Args:
            base_reward: Habit's base reward in minutes
            streak: Streak multiplier (see get_streak_multiplier)
            combo: Multiplier for completing several habits in a row
            time: Multiplier for completing within the habit's time window
            verification: Multiplier for verified completions

        Returns:
            Minutes earned (never negative)
        """
        total_multiplier = 1.0
        for multiplier in (streak, combo, time, verification):
            if multiplier is not None:
                total_multiplier *= multiplier

        return max(0, math.floor(base_reward * total_multiplier))

    @staticmethod
    def get_streak_multiplier(streak: int) -> float:
        """
        Multiplier for the current streak length.

        7+ days -> 1.1, 14+ -> 1.25, 30+ -> 1.5, 50+ -> 1.75, 100+ -> 2.0
        """
        for minimum, multiplier in STREAK_MULTIPLIERS:
            if streak >= minimum:
                return multiplier
        return 1.0

    def calculate_habit_reward(self, base_reward: int, streak: int, **multipliers) -> int:
        """Reward for a habit completion with the streak multiplier applied"""
        return self.calculate_reward_amount(
            base_reward,
            streak=self.get_streak_multiplier(streak),
            **multipliers
        )
