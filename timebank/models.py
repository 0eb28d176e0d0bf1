from sqlalchemy import Column, Integer, String, Text, DateTime
from datetime import datetime

from timebank.database import Base
from timebank.constants import (
    DAILY_EARNING_CAP,
    MIN_BALANCE,
    MAX_BALANCE,
    INITIAL_BALANCE,
    TRANSACTION_RETENTION,
    CRITICAL_BALANCE,
    NEAR_CAP_THRESHOLD,
)


class StateEntry(Base):
    __tablename__ = "state_entries"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String, nullable=False, unique=True, index=True)  # e.g. "time-bank-storage"
    value = Column(Text, nullable=False)  # JSON snapshot
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class LedgerSettings(Base):
    __tablename__ = "ledger_settings"

    id = Column(Integer, primary_key=True, index=True)

    # Daily caps (minutes)
    daily_earning_cap = Column(Integer, default=DAILY_EARNING_CAP)
    daily_spending_cap = Column(Integer, nullable=True)  # NULL = no spending cap

    # Balance bounds (minutes)
    min_balance = Column(Integer, default=MIN_BALANCE)
    max_balance = Column(Integer, default=MAX_BALANCE)
    initial_balance = Column(Integer, default=INITIAL_BALANCE)  # Only used for a fresh snapshot

    # Transaction log size kept in the snapshot
    transaction_retention = Column(Integer, default=TRANSACTION_RETENTION)

    # Warning thresholds
    critical_balance = Column(Integer, default=CRITICAL_BALANCE)
    near_cap_threshold = Column(Integer, default=NEAR_CAP_THRESHOLD)

    # Day boundary (midnight in this IANA zone; NULL = host local time)
    timezone = Column(String, nullable=True)

    # Updated timestamp
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
