from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import date, datetime
from typing import Optional, List, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from timebank.constants import (
    DAILY_EARNING_CAP,
    DAILY_SPENDING_CAP,
    MIN_BALANCE,
    MAX_BALANCE,
    INITIAL_BALANCE,
    TRANSACTION_RETENTION,
    CRITICAL_BALANCE,
    NEAR_CAP_THRESHOLD,
)

TransactionType = Literal["earn", "spend", "bonus", "penalty"]
SourceType = Literal["habit", "app_unlock", "emergency", "bonus", "streak"]
LOCAL_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"  # YYYY-MM-DD


# Snapshot schemas (camelCase on the wire, snake_case in Python)
class TransactionMetadata(BaseModel):
    """Display context for a transaction. Not interpreted by the ledger."""
    habit_name: Optional[str] = Field(default=None, alias="habitName")
    app_name: Optional[str] = Field(default=None, alias="appName")
    duration: Optional[int] = None  # Minutes
    bonus_multiplier: Optional[float] = Field(default=None, alias="bonusMultiplier")

    class Config:
        populate_by_name = True
        extra = "allow"
        frozen = True


class Transaction(BaseModel):
    """
    One balance change.

    amount is the signed delta actually applied to the balance:
    positive for earn/bonus, negative for spend/penalty.
    """
    id: str
    type: TransactionType
    amount: int
    balance_after: int = Field(alias="balanceAfter")
    source_type: SourceType = Field(alias="sourceType")
    source_id: Optional[str] = Field(default=None, alias="sourceId")
    metadata: Optional[TransactionMetadata] = None
    timestamp: int  # Epoch milliseconds

    class Config:
        populate_by_name = True
        frozen = True


class LedgerState(BaseModel):
    balance: int = INITIAL_BALANCE
    lifetime_earned: int = Field(default=0, ge=0, alias="lifetimeEarned")
    lifetime_spent: int = Field(default=0, ge=0, alias="lifetimeSpent")
    daily_earned: int = Field(default=0, ge=0, alias="dailyEarned")
    daily_spent: int = Field(default=0, ge=0, alias="dailySpent")
    last_reset_date: str = Field(alias="lastResetDate", pattern=LOCAL_DATE_PATTERN)  # local calendar
    current_streak: int = Field(default=0, ge=0, alias="currentStreak")
    longest_streak: int = Field(default=0, ge=0, alias="longestStreak")
    last_streak_date: Optional[str] = Field(
        default=None, alias="lastStreakDate", pattern=LOCAL_DATE_PATTERN
    )
    transactions: List[Transaction] = Field(default_factory=list)  # Most recent first

    class Config:
        populate_by_name = True

    @field_validator("last_reset_date", "last_streak_date")
    @classmethod
    def check_calendar_date(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            # Pattern alone accepts e.g. 2026-02-30
            date.fromisoformat(value)
        return value


# Ledger policy
class LedgerPolicy(BaseModel):
    daily_earning_cap: int = Field(default=DAILY_EARNING_CAP, ge=0)
    daily_spending_cap: Optional[int] = Field(default=DAILY_SPENDING_CAP, ge=0)  # None = uncapped
    min_balance: int = Field(default=MIN_BALANCE, le=0)
    max_balance: int = Field(default=MAX_BALANCE, ge=0)
    initial_balance: int = INITIAL_BALANCE
    transaction_retention: int = Field(default=TRANSACTION_RETENTION, ge=1, le=1000)
    critical_balance: int = CRITICAL_BALANCE
    near_cap_threshold: int = Field(default=NEAR_CAP_THRESHOLD, ge=0)

    class Config:
        from_attributes = True

    @model_validator(mode="after")
    def check_bounds(self):
        if not self.min_balance <= self.initial_balance <= self.max_balance:
            raise ValueError("initial_balance must lie between min_balance and max_balance")
        return self


# Settings schemas
class SettingsBase(BaseModel):
    daily_earning_cap: int = Field(default=DAILY_EARNING_CAP, ge=0, le=1440)
    daily_spending_cap: Optional[int] = Field(default=None, ge=0, le=1440)
    min_balance: int = Field(default=MIN_BALANCE, ge=-1440, le=0)
    max_balance: int = Field(default=MAX_BALANCE, ge=0, le=10080)
    initial_balance: int = Field(default=INITIAL_BALANCE, ge=-1440, le=10080)
    transaction_retention: int = Field(default=TRANSACTION_RETENTION, ge=1, le=1000)
    critical_balance: int = Field(default=CRITICAL_BALANCE, ge=0, le=1440)
    near_cap_threshold: int = Field(default=NEAR_CAP_THRESHOLD, ge=0, le=1440)
    timezone: Optional[str] = None  # IANA name, e.g. "Europe/Berlin"


class SettingsUpdate(BaseModel):
    daily_earning_cap: Optional[int] = Field(None, ge=0, le=1440)
    daily_spending_cap: Optional[int] = Field(None, ge=0, le=1440)  # Explicit null disables the cap
    min_balance: Optional[int] = Field(None, ge=-1440, le=0)
    max_balance: Optional[int] = Field(None, ge=0, le=10080)
    initial_balance: Optional[int] = Field(None, ge=-1440, le=10080)
    transaction_retention: Optional[int] = Field(None, ge=1, le=1000)
    critical_balance: Optional[int] = Field(None, ge=0, le=1440)
    near_cap_threshold: Optional[int] = Field(None, ge=0, le=1440)
    timezone: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {value}")
        return value


class SettingsResponse(SettingsBase):
    id: int
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Request schemas
class EarnRequest(BaseModel):
    amount: int = Field(..., gt=0)  # Minutes
    source_type: SourceType = "habit"
    source_id: Optional[str] = None
    metadata: Optional[TransactionMetadata] = None


class SpendRequest(BaseModel):
    amount: int = Field(..., gt=0)
    source_type: SourceType = "app_unlock"
    source_id: Optional[str] = None
    metadata: Optional[TransactionMetadata] = None


class AdjustmentRequest(BaseModel):
    """Bonus or penalty; source_type falls back to the operation's default"""
    amount: int = Field(..., gt=0)
    source_type: Optional[SourceType] = None
    source_id: Optional[str] = None
    metadata: Optional[TransactionMetadata] = None


class StreakUpdate(BaseModel):
    completed_today: bool


class HabitCompletionRequest(BaseModel):
    habit_id: str
    habit_name: Optional[str] = None
    base_reward: int = Field(..., gt=0, le=480)  # Minutes before multipliers
    duration: Optional[int] = Field(None, ge=0)  # Minutes spent on the habit
    combo_multiplier: Optional[float] = Field(None, gt=0, le=5.0)
    time_multiplier: Optional[float] = Field(None, gt=0, le=5.0)
    verification_multiplier: Optional[float] = Field(None, gt=0, le=5.0)


# Response schemas
class OperationResult(BaseModel):
    success: bool
    requested_amount: int
    applied_amount: int = 0
    balance: int
    transaction: Optional[Transaction] = None
    reason: Optional[str] = None
    persisted: bool = True


class BalanceResponse(BaseModel):
    balance: int
    daily_earned: int
    daily_spent: int
    remaining_daily_capacity: int
    remaining_spend_capacity: Optional[int] = None
    is_low_balance: bool
    is_near_daily_cap: bool


class StreakResponse(BaseModel):
    current_streak: int
    longest_streak: int


class HabitCompletionResponse(BaseModel):
    reward: int  # Minutes after multipliers, before the daily cap
    streak_multiplier: float
    current_streak: int
    result: OperationResult


class TransactionSummary(BaseModel):
    total_earned: int = 0
    total_spent: int = 0
    total_bonuses: int = 0
    total_penalties: int = 0
    transaction_count: int = 0
