"""
Ledger-wide constants.
Caps, balance bounds and the string values used by transactions.
"""

# Daily limits (minutes)
DAILY_EARNING_CAP = 180
DAILY_SPENDING_CAP = None  # None disables the spending cap

# Balance bounds (minutes)
MAX_BALANCE = 480  # 8 hours
MIN_BALANCE = -60  # can go negative through emergency penalties
INITIAL_BALANCE = 45

# Warning thresholds
CRITICAL_BALANCE = 15
NEAR_CAP_THRESHOLD = 30  # warn when fewer than 30 minutes of earning remain

# Transaction log retention (most recent entries kept in the snapshot)
TRANSACTION_RETENTION = 50

# Transaction types
TRANSACTION_TYPE_EARN = "earn"
TRANSACTION_TYPE_SPEND = "spend"
TRANSACTION_TYPE_BONUS = "bonus"
TRANSACTION_TYPE_PENALTY = "penalty"

EARNING_TYPES = (TRANSACTION_TYPE_EARN, TRANSACTION_TYPE_BONUS)
SPENDING_TYPES = (TRANSACTION_TYPE_SPEND, TRANSACTION_TYPE_PENALTY)

# Transaction sources
SOURCE_HABIT = "habit"
SOURCE_APP_UNLOCK = "app_unlock"
SOURCE_EMERGENCY = "emergency"
SOURCE_BONUS = "bonus"
SOURCE_STREAK = "streak"

SOURCE_TYPES = (
    SOURCE_HABIT,
    SOURCE_APP_UNLOCK,
    SOURCE_EMERGENCY,
    SOURCE_BONUS,
    SOURCE_STREAK,
)

# Failure reasons reported in operation results
REASON_INVALID_AMOUNT = "invalid_amount"
REASON_DAILY_CAP_REACHED = "daily_cap_reached"
REASON_DAILY_SPEND_CAP_REACHED = "daily_spend_cap_reached"
REASON_INSUFFICIENT_BALANCE = "insufficient_balance"
REASON_BALANCE_LIMIT_REACHED = "balance_limit_reached"

# Metadata marker on transactions that move the balance into new policy bounds
POLICY_ADJUSTMENT = "policy_change"

# Streak multipliers: (minimum streak, multiplier), highest first
STREAK_MULTIPLIERS = (
    (100, 2.0),
    (50, 1.75),
    (30, 1.5),
    (14, 1.25),
    (7, 1.1),
)

# Storage
DEFAULT_STORAGE_KEY = "time-bank-storage"
DEFAULT_DB_DIRECTORY = "/var/lib/timebank"
DEFAULT_DB_FILE = "timebank.db"

# Logging
DEFAULT_LOG_DIRECTORY_PROD = "/var/log/timebank"
DEFAULT_LOG_DIRECTORY_DEV = "./logs"
