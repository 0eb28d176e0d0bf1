"""
Time bank HTTP routes.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from timebank.auth import verify_api_key
from timebank.constants import REASON_INVALID_AMOUNT, SOURCE_HABIT
from timebank.database import get_db
from timebank.exceptions import TransactionNotFoundException
from timebank.repositories.settings_repository import SettingsRepository
from timebank.schemas import (
    AdjustmentRequest,
    BalanceResponse,
    EarnRequest,
    HabitCompletionRequest,
    HabitCompletionResponse,
    LedgerPolicy,
    LedgerState,
    OperationResult,
    SettingsResponse,
    SettingsUpdate,
    SourceType,
    SpendRequest,
    StreakResponse,
    StreakUpdate,
    Transaction,
    TransactionMetadata,
    TransactionSummary,
    TransactionType,
)
from timebank.services.clock_service import SystemClock
from timebank.services.ledger_service import TimeBankLedger
from timebank.services.rewards_service import RewardsService
from timebank.services.scheduler_service import reschedule_rollover
from timebank.services.transaction_service import TransactionService

router = APIRouter(
    prefix="/api/timebank",
    tags=["timebank"],
    dependencies=[Depends(verify_api_key)]
)


def get_ledger(request: Request) -> TimeBankLedger:
    """The process-wide ledger created at startup"""
    return request.app.state.ledger


def _balance_response(ledger: TimeBankLedger) -> BalanceResponse:
    state = ledger.get_state()
    return BalanceResponse(
        balance=state.balance,
        daily_earned=state.daily_earned,
        daily_spent=state.daily_spent,
        remaining_daily_capacity=ledger.get_remaining_daily_capacity(),
        remaining_spend_capacity=ledger.get_remaining_spend_capacity(),
        is_low_balance=ledger.is_low_balance(),
        is_near_daily_cap=ledger.is_near_daily_cap()
    )


@router.get("/balance", response_model=BalanceResponse)
def get_balance(ledger: TimeBankLedger = Depends(get_ledger)):
    """Get current balance and today's counters."""
    return _balance_response(ledger)


@router.get("/state", response_model=LedgerState)
def get_state(ledger: TimeBankLedger = Depends(get_ledger)):
    """Get the full ledger snapshot."""
    return ledger.get_state()


@router.get("/capacity")
def get_capacity(ledger: TimeBankLedger = Depends(get_ledger)):
    """Get remaining earning (and spending) capacity for today."""
    return {
        "remaining_daily_capacity": ledger.get_remaining_daily_capacity(),
        "remaining_spend_capacity": ledger.get_remaining_spend_capacity()
    }


@router.get("/transactions", response_model=List[Transaction])
def get_transactions(
    limit: int = Query(50, ge=1, le=1000),
    transaction_type: Optional[TransactionType] = Query(None, alias="type"),
    source: Optional[SourceType] = Query(None),
    ledger: TimeBankLedger = Depends(get_ledger)
):
    """Get recent transactions, most recent first."""
    transactions = ledger.get_transactions()
    if transaction_type:
        transactions = TransactionService.get_transactions_by_type(transaction_type, transactions)
    if source:
        transactions = TransactionService.get_transactions_by_source(source, transactions)
    return transactions[:limit]


@router.get("/transactions/summary", response_model=TransactionSummary)
def get_transaction_summary(ledger: TimeBankLedger = Depends(get_ledger)):
    """Get totals per transaction type over the retained log."""
    return TransactionService.get_transaction_summary(ledger.get_transactions())


@router.get("/transactions/{transaction_id}", response_model=Transaction)
def get_transaction(transaction_id: str, ledger: TimeBankLedger = Depends(get_ledger)):
    """Get one transaction by ID."""
    try:
        return TransactionService.get_transaction_by_id(transaction_id, ledger.get_transactions())
    except TransactionNotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/earn", response_model=OperationResult)
def earn(request: EarnRequest, ledger: TimeBankLedger = Depends(get_ledger)):
    """Earn minutes (capped at today's remaining capacity)."""
    return ledger.record_earning(
        request.amount, request.source_type, request.metadata, request.source_id
    )


@router.post("/spend", response_model=OperationResult)
def spend(request: SpendRequest, ledger: TimeBankLedger = Depends(get_ledger)):
    """Spend minutes; fails without changes on insufficient balance."""
    return ledger.record_spending(
        request.amount, request.source_type, request.metadata, request.source_id
    )


@router.post("/bonus", response_model=OperationResult)
def apply_bonus(request: AdjustmentRequest, ledger: TimeBankLedger = Depends(get_ledger)):
    """Credit a bonus outside the daily cap."""
    return ledger.record_bonus(
        request.amount, request.source_type, request.metadata, request.source_id
    )


@router.post("/penalty", response_model=OperationResult)
def apply_penalty(request: AdjustmentRequest, ledger: TimeBankLedger = Depends(get_ledger)):
    """Debit a penalty outside the daily cap."""
    return ledger.record_penalty(
        request.amount, request.source_type, request.metadata, request.source_id
    )


@router.post("/habits/complete", response_model=HabitCompletionResponse)
def complete_habit(
    request: HabitCompletionRequest,
    ledger: TimeBankLedger = Depends(get_ledger)
):
    """
    Record a habit completion: extend the streak, then earn the reward
    with the streak multiplier applied.
    """
    rewards = RewardsService()
    current_streak = ledger.update_streak(True)
    streak_multiplier = rewards.get_streak_multiplier(current_streak)
    reward = rewards.calculate_habit_reward(
        request.base_reward,
        current_streak,
        combo=request.combo_multiplier,
        time=request.time_multiplier,
        verification=request.verification_multiplier
    )

    if reward > 0:
        metadata = TransactionMetadata(
            habit_name=request.habit_name,
            duration=request.duration,
            bonus_multiplier=streak_multiplier if streak_multiplier != 1.0 else None
        )
        result = ledger.record_earning(reward, SOURCE_HABIT, metadata, request.habit_id)
    else:
        result = OperationResult(
            success=False,
            requested_amount=reward,
            balance=ledger.get_balance(),
            reason=REASON_INVALID_AMOUNT
        )

    return HabitCompletionResponse(
        reward=reward,
        streak_multiplier=streak_multiplier,
        current_streak=current_streak,
        result=result
    )


@router.post("/streak", response_model=StreakResponse)
def update_streak(request: StreakUpdate, ledger: TimeBankLedger = Depends(get_ledger)):
    """Record whether a habit was completed today."""
    ledger.update_streak(request.completed_today)
    return StreakResponse(
        current_streak=ledger.current_streak,
        longest_streak=ledger.longest_streak
    )


@router.post("/streak/reset", response_model=StreakResponse)
def reset_streak(ledger: TimeBankLedger = Depends(get_ledger)):
    """Reset the current streak to 0."""
    ledger.reset_streak()
    return StreakResponse(
        current_streak=ledger.current_streak,
        longest_streak=ledger.longest_streak
    )


@router.post("/daily/reset", response_model=BalanceResponse)
def reset_daily_counters(ledger: TimeBankLedger = Depends(get_ledger)):
    """Zero today's earned/spent counters."""
    ledger.reset_daily_counters()
    return _balance_response(ledger)


@router.get("/settings", response_model=SettingsResponse)
def get_settings(db: Session = Depends(get_db)):
    """Get ledger settings."""
    return SettingsRepository.get(db)


@router.put("/settings", response_model=SettingsResponse)
def update_settings(
    settings_update: SettingsUpdate,
    db: Session = Depends(get_db),
    ledger: TimeBankLedger = Depends(get_ledger)
):
    """Update ledger settings and apply them to the running ledger."""
    current = SettingsResponse.model_validate(SettingsRepository.get(db))
    merged = {**current.model_dump(), **settings_update.model_dump(exclude_unset=True)}
    try:
        policy = LedgerPolicy.model_validate(merged)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )

    settings = SettingsRepository.update(db, settings_update)
    clock = None
    if "timezone" in settings_update.model_fields_set:
        clock = SystemClock(settings.timezone)
    ledger.update_policy(policy, clock=clock)
    if clock is not None:
        reschedule_rollover(settings.timezone)
    return settings
