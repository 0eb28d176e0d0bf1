"""
TimeBank ledger.
Converts habit completions into spendable minutes, enforces the daily
earn/spend caps, keeps the recent transaction log and tracks the
completion streak.
"""
import logging
import threading
import uuid
from typing import List, Optional, Union

from pydantic import ValidationError

from timebank.constants import (
    TRANSACTION_TYPE_EARN,
    TRANSACTION_TYPE_SPEND,
    TRANSACTION_TYPE_BONUS,
    TRANSACTION_TYPE_PENALTY,
    SOURCE_HABIT,
    SOURCE_APP_UNLOCK,
    SOURCE_BONUS,
    SOURCE_EMERGENCY,
    SOURCE_TYPES,
    REASON_DAILY_CAP_REACHED,
    REASON_DAILY_SPEND_CAP_REACHED,
    REASON_INSUFFICIENT_BALANCE,
    REASON_BALANCE_LIMIT_REACHED,
    POLICY_ADJUSTMENT,
    DEFAULT_STORAGE_KEY,
)
from timebank.exceptions import (
    InvalidAmountException,
    PersistenceException,
    SnapshotCorruptedException,
    ValidationException,
)
from timebank.repositories.state_repository import StateStore
from timebank.schemas import (
    LedgerPolicy,
    LedgerState,
    OperationResult,
    Transaction,
    TransactionMetadata,
)
from timebank.services.clock_service import Clock, SystemClock, days_between

logger = logging.getLogger("timebank.ledger")

MetadataInput = Union[TransactionMetadata, dict, None]


class TimeBankLedger:
    """
    Single-writer ledger over one LedgerState snapshot.

    Every public method runs under one re-entrant lock and starts with the
    daily rollover check, so reads and writes share the same serialization
    path. The snapshot is saved after every change; a failed save leaves
    the in-memory state intact and is retried on the next change.
    """

    def __init__(
        self,
        store: StateStore,
        clock: Optional[Clock] = None,
        policy: Optional[LedgerPolicy] = None
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.policy = policy or LedgerPolicy()
        self.last_persistence_error: Optional[Exception] = None
        self._pending_save = False
        self._lock = threading.RLock()
        self._state = self._load_state()

    # ------------------------------------------------------------------
    # Earning and spending
    # ------------------------------------------------------------------

    def earn(
        self,
        amount: int,
        source_type: str = SOURCE_HABIT,
        metadata: MetadataInput = None,
        source_id: Optional[str] = None
    ) -> bool:
        """Earn minutes. False when today's earning cap is used up."""
        return self.record_earning(amount, source_type, metadata, source_id).success

    def record_earning(
        self,
        amount: int,
        source_type: str = SOURCE_HABIT,
        metadata: MetadataInput = None,
        source_id: Optional[str] = None
    ) -> OperationResult:
        """
        Earn minutes and report what was actually credited.

        A request that would exceed the daily cap is reduced to the
        remaining headroom rather than rejected; only an exhausted cap
        fails. The credit is also limited so the balance stays at or
        below max_balance.

        Args:
            amount: Requested minutes (positive)
            source_type: What generated the earning
            metadata: Display context (habit name, duration, ...)
            source_id: Originating habit id

        Returns:
            OperationResult with the applied amount and new transaction

        Raises:
            InvalidAmountException: If amount is not a positive integer
        """
        self._validate_amount(TRANSACTION_TYPE_EARN, amount)
        self._validate_source(source_type)
        details = self._coerce_metadata(metadata)

        with self._lock:
            rolled = self._rollover()
            state = self._state

            remaining = self.policy.daily_earning_cap - state.daily_earned
            if remaining <= 0:
                return self._rejected(amount, REASON_DAILY_CAP_REACHED, rolled)

            applied = min(amount, remaining, self.policy.max_balance - state.balance)
            if applied <= 0:
                return self._rejected(amount, REASON_BALANCE_LIMIT_REACHED, rolled)

            balance = state.balance + applied
            transaction = self._new_transaction(
                TRANSACTION_TYPE_EARN, applied, balance, source_type, source_id, details
            )
            self._state = state.model_copy(update={
                "balance": balance,
                "lifetime_earned": state.lifetime_earned + applied,
                "daily_earned": state.daily_earned + applied,
                "transactions": self._prepend(transaction),
            })
            return self._applied(amount, transaction)

    def spend(
        self,
        amount: int,
        source_type: str = SOURCE_APP_UNLOCK,
        metadata: MetadataInput = None,
        source_id: Optional[str] = None
    ) -> bool:
        """Spend minutes. False on insufficient balance or an exhausted spending cap."""
        return self.record_spending(amount, source_type, metadata, source_id).success

    def record_spending(
        self,
        amount: int,
        source_type: str = SOURCE_APP_UNLOCK,
        metadata: MetadataInput = None,
        source_id: Optional[str] = None
    ) -> OperationResult:
        """
        Spend minutes and report what was actually debited.

        The full amount must be covered by the balance; there is no
        partial spend on insufficient funds. With a daily spending cap
        configured, the debit is reduced to the remaining spend headroom.

        Raises:
            InvalidAmountException: If amount is not a positive integer
        """
        self._validate_amount(TRANSACTION_TYPE_SPEND, amount)
        self._validate_source(source_type)
        details = self._coerce_metadata(metadata)

        with self._lock:
            rolled = self._rollover()
            state = self._state

            if state.balance < amount:
                return self._rejected(amount, REASON_INSUFFICIENT_BALANCE, rolled)

            applied = amount
            spending_cap = self.policy.daily_spending_cap
            if spending_cap is not None:
                remaining = spending_cap - state.daily_spent
                if remaining <= 0:
                    return self._rejected(amount, REASON_DAILY_SPEND_CAP_REACHED, rolled)
                applied = min(amount, remaining)

            balance = state.balance - applied
            transaction = self._new_transaction(
                TRANSACTION_TYPE_SPEND, -applied, balance, source_type, source_id, details
            )
            self._state = state.model_copy(update={
                "balance": balance,
                "lifetime_spent": state.lifetime_spent + applied,
                "daily_spent": state.daily_spent + applied,
                "transactions": self._prepend(transaction),
            })
            return self._applied(amount, transaction)

    def apply_bonus(
        self,
        amount: int,
        source_type: Optional[str] = SOURCE_BONUS,
        metadata: MetadataInput = None,
        source_id: Optional[str] = None
    ) -> bool:
        """Credit a bonus outside the daily cap"""
        return self.record_bonus(amount, source_type, metadata, source_id).success

    def record_bonus(
        self,
        amount: int,
        source_type: Optional[str] = SOURCE_BONUS,
        metadata: MetadataInput = None,
        source_id: Optional[str] = None
    ) -> OperationResult:
        """
        Credit a bonus. Not subject to the daily earning cap and does not
        use up its headroom; only max_balance limits it.
        """
        source_type = source_type or SOURCE_BONUS
        self._validate_amount(TRANSACTION_TYPE_BONUS, amount)
        self._validate_source(source_type)
        details = self._coerce_metadata(metadata)

        with self._lock:
            rolled = self._rollover()
            state = self._state

            applied = min(amount, self.policy.max_balance - state.balance)
            if applied <= 0:
                return self._rejected(amount, REASON_BALANCE_LIMIT_REACHED, rolled)

            balance = state.balance + applied
            transaction = self._new_transaction(
                TRANSACTION_TYPE_BONUS, applied, balance, source_type, source_id, details
            )
            self._state = state.model_copy(update={
                "balance": balance,
                "lifetime_earned": state.lifetime_earned + applied,
                "transactions": self._prepend(transaction),
            })
            return self._applied(amount, transaction)

    def apply_penalty(
        self,
        amount: int,
        source_type: Optional[str] = SOURCE_EMERGENCY,
        metadata: MetadataInput = None,
        source_id: Optional[str] = None
    ) -> bool:
        """Debit a penalty outside the daily cap; may take the balance negative"""
        return self.record_penalty(amount, source_type, metadata, source_id).success

    def record_penalty(
        self,
        amount: int,
        source_type: Optional[str] = SOURCE_EMERGENCY,
        metadata: MetadataInput = None,
        source_id: Optional[str] = None
    ) -> OperationResult:
        """
        Debit a penalty. No balance pre-check: the balance is clamped at
        min_balance instead of rejecting the penalty.
        """
        source_type = source_type or SOURCE_EMERGENCY
        self._validate_amount(TRANSACTION_TYPE_PENALTY, amount)
        self._validate_source(source_type)
        details = self._coerce_metadata(metadata)

        with self._lock:
            rolled = self._rollover()
            state = self._state

            applied = min(amount, state.balance - self.policy.min_balance)
            if applied <= 0:
                return self._rejected(amount, REASON_BALANCE_LIMIT_REACHED, rolled)

            balance = state.balance - applied
            transaction = self._new_transaction(
                TRANSACTION_TYPE_PENALTY, -applied, balance, source_type, source_id, details
            )
            self._state = state.model_copy(update={
                "balance": balance,
                "lifetime_spent": state.lifetime_spent + applied,
                "transactions": self._prepend(transaction),
            })
            return self._applied(amount, transaction)

    # ------------------------------------------------------------------
    # Day boundary
    # ------------------------------------------------------------------

    def rollover_if_needed(self) -> bool:
        """
        Reset the daily counters if the local date has advanced.

        Returns:
            True if a rollover happened
        """
        with self._lock:
            rolled = self._rollover()
            if rolled:
                self._persist()
            return rolled

    def reset_daily_counters(self) -> None:
        """Unconditionally zero today's counters"""
        with self._lock:
            today = self.clock.today_local_date()
            self._state = self._state.model_copy(update={
                "daily_earned": 0,
                "daily_spent": 0,
                "last_reset_date": today,
            })
            logger.info(f"Daily counters reset manually for {today}")
            self._persist()

    # ------------------------------------------------------------------
    # Streaks
    # ------------------------------------------------------------------

    def update_streak(self, completed_today: bool) -> int:
        """
        Record whether a qualifying habit was completed today.

        First evaluation of a local day: a completion extends the streak
        (restarting at 1 if a whole day was skipped), no completion breaks
        it. Later evaluations the same day only start a streak that is at 0
        or cancel today's streak on an "uncomplete"; repeated completions
        are no-ops.

        Returns:
            Current streak after the update
        """
        with self._lock:
            rolled = self._rollover()
            state = self._state
            today = state.last_reset_date
            streak = state.current_streak

            if state.last_streak_date != today:
                if not completed_today:
                    streak = 0
                elif state.last_streak_date and days_between(state.last_streak_date, today) > 1:
                    streak = 1
                else:
                    streak += 1
            elif completed_today and streak == 0:
                streak = 1
            elif not completed_today and streak > 0:
                streak = 0

            longest = max(state.longest_streak, streak)
            changed = (
                streak != state.current_streak
                or longest != state.longest_streak
                or today != state.last_streak_date
            )
            if changed:
                self._state = state.model_copy(update={
                    "current_streak": streak,
                    "longest_streak": longest,
                    "last_streak_date": today,
                })
            if changed or rolled:
                self._persist()
            return streak

    def reset_streak(self) -> None:
        """Set the current streak to 0 (explicit miss acknowledgement)"""
        with self._lock:
            self._rollover()
            self._state = self._state.model_copy(update={"current_streak": 0})
            self._persist()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_balance(self) -> int:
        with self._lock:
            self._sync()
            return self._state.balance

    def get_transactions(self, limit: Optional[int] = None) -> List[Transaction]:
        """Most recent transactions first, at most limit (default: retention size)"""
        with self._lock:
            self._sync()
            if limit is None:
                limit = self.policy.transaction_retention
            return list(self._state.transactions[:max(limit, 0)])

    def get_remaining_daily_capacity(self) -> int:
        """Minutes that can still be earned today"""
        with self._lock:
            self._sync()
            return max(self.policy.daily_earning_cap - self._state.daily_earned, 0)

    def get_remaining_spend_capacity(self) -> Optional[int]:
        """Minutes that can still be spent today, or None without a spending cap"""
        with self._lock:
            self._sync()
            if self.policy.daily_spending_cap is None:
                return None
            return max(self.policy.daily_spending_cap - self._state.daily_spent, 0)

    def get_state(self) -> LedgerState:
        """Copy of the full snapshot"""
        with self._lock:
            self._sync()
            return self._state.model_copy(deep=True)

    def is_low_balance(self) -> bool:
        return self.get_balance() < self.policy.critical_balance

    def is_near_daily_cap(self) -> bool:
        with self._lock:
            self._sync()
            threshold = self.policy.daily_earning_cap - self.policy.near_cap_threshold
            return self._state.daily_earned > threshold

    @property
    def lifetime_earned(self) -> int:
        return self._read("lifetime_earned")

    @property
    def lifetime_spent(self) -> int:
        return self._read("lifetime_spent")

    @property
    def daily_earned(self) -> int:
        return self._read("daily_earned")

    @property
    def daily_spent(self) -> int:
        return self._read("daily_spent")

    @property
    def last_reset_date(self) -> str:
        return self._read("last_reset_date")

    @property
    def current_streak(self) -> int:
        return self._read("current_streak")

    @property
    def longest_streak(self) -> int:
        return self._read("longest_streak")

    # ------------------------------------------------------------------
    # Policy and persistence
    # ------------------------------------------------------------------

    def update_policy(self, policy: LedgerPolicy, clock: Optional[Clock] = None) -> Optional[Transaction]:
        """
        Swap caps and bounds (and optionally the clock).

        A balance outside the new bounds is moved to the nearest bound by a
        recorded bonus or penalty, and the log is cut to the new retention.

        Returns:
            The adjustment transaction, if one was needed
        """
        with self._lock:
            self.policy = policy
            if clock is not None:
                self.clock = clock
            logger.info(
                f"Ledger policy updated: earn cap {policy.daily_earning_cap}, "
                f"spend cap {policy.daily_spending_cap}, "
                f"bounds [{policy.min_balance}, {policy.max_balance}]"
            )

            self._rollover()
            adjustment = self._clamp_to_bounds()
            self._state = self._state.model_copy(update={
                "transactions": self._state.transactions[:policy.transaction_retention],
            })
            self._persist()
            return adjustment

    @property
    def has_pending_save(self) -> bool:
        return self._pending_save

    def flush(self) -> bool:
        """
        Retry a failed save.

        Returns:
            True if the current state is saved
        """
        with self._lock:
            if not self._pending_save:
                return True
            return self._persist()

    # ------------------------------------------------------------------
    # Internals (callers hold the lock)
    # ------------------------------------------------------------------

    def _initial_state(self) -> LedgerState:
        return LedgerState(
            balance=self.policy.initial_balance,
            last_reset_date=self.clock.today_local_date()
        )

    def _load_state(self) -> LedgerState:
        try:
            state = self.store.load()
            if state is not None:
                self._check_bounds(state)
        except (PersistenceException, OSError) as e:
            # Corrupt or unreadable snapshot: start over rather than crash
            logger.warning(f"Could not load ledger snapshot, using defaults: {e}")
            self.last_persistence_error = e
            return self._initial_state()

        if state is None:
            logger.info("No ledger snapshot found, starting with defaults")
            return self._initial_state()
        return state

    def _persist(self) -> bool:
        try:
            self.store.save(self._state)
        except (PersistenceException, OSError) as e:
            self._pending_save = True
            self.last_persistence_error = e
            logger.warning(f"Ledger snapshot not saved, will retry on next change: {e}")
            return False
        self._pending_save = False
        self.last_persistence_error = None
        return True

    def _rollover(self) -> bool:
        today = self.clock.today_local_date()
        state = self._state
        if state.last_reset_date == today:
            return False
        logger.info(
            f"Daily rollover {state.last_reset_date} -> {today} "
            f"(earned {state.daily_earned}, spent {state.daily_spent})"
        )
        self._state = state.model_copy(update={
            "daily_earned": 0,
            "daily_spent": 0,
            "last_reset_date": today,
        })
        return True

    def _clamp_to_bounds(self) -> Optional[Transaction]:
        state = self._state
        balance = min(max(state.balance, self.policy.min_balance), self.policy.max_balance)
        delta = balance - state.balance
        if delta == 0:
            return None

        details = TransactionMetadata(adjustment=POLICY_ADJUSTMENT)
        if delta > 0:
            transaction = self._new_transaction(
                TRANSACTION_TYPE_BONUS, delta, balance, SOURCE_BONUS, None, details
            )
            totals = {"lifetime_earned": state.lifetime_earned + delta}
        else:
            transaction = self._new_transaction(
                TRANSACTION_TYPE_PENALTY, delta, balance, SOURCE_EMERGENCY, None, details
            )
            totals = {"lifetime_spent": state.lifetime_spent - delta}

        logger.warning(
            f"Balance {state.balance} outside new bounds, adjusted by {delta:+d} to {balance}"
        )
        self._state = state.model_copy(update={
            "balance": balance,
            "transactions": self._prepend(transaction),
            **totals,
        })
        return transaction

    def _check_bounds(self, state: LedgerState) -> None:
        if not self.policy.min_balance <= state.balance <= self.policy.max_balance:
            raise SnapshotCorruptedException(
                getattr(self.store, "key", DEFAULT_STORAGE_KEY),
                f"balance {state.balance} outside "
                f"[{self.policy.min_balance}, {self.policy.max_balance}]"
            )

    def _sync(self) -> None:
        if self._rollover():
            self._persist()

    def _read(self, field: str):
        with self._lock:
            self._sync()
            return getattr(self._state, field)

    def _new_transaction(
        self,
        transaction_type: str,
        amount: int,
        balance_after: int,
        source_type: str,
        source_id: Optional[str],
        metadata: Optional[TransactionMetadata]
    ) -> Transaction:
        return Transaction(
            id=str(uuid.uuid4()),
            type=transaction_type,
            amount=amount,
            balance_after=balance_after,
            source_type=source_type,
            source_id=source_id,
            metadata=metadata,
            timestamp=self.clock.now(),
        )

    def _prepend(self, transaction: Transaction) -> List[Transaction]:
        # Oldest entries beyond the retention size are dropped
        retained = [transaction] + self._state.transactions
        return retained[:self.policy.transaction_retention]

    def _applied(self, requested: int, transaction: Transaction) -> OperationResult:
        persisted = self._persist()
        logger.debug(
            f"{transaction.type} {transaction.amount:+d} from {transaction.source_type} "
            f"-> balance {transaction.balance_after}"
        )
        return OperationResult(
            success=True,
            requested_amount=requested,
            applied_amount=abs(transaction.amount),
            balance=self._state.balance,
            transaction=transaction,
            persisted=persisted,
        )

    def _rejected(self, requested: int, reason: str, rolled: bool) -> OperationResult:
        persisted = self._persist() if rolled else not self._pending_save
        logger.debug(f"Operation for {requested} minutes rejected: {reason}")
        return OperationResult(
            success=False,
            requested_amount=requested,
            balance=self._state.balance,
            reason=reason,
            persisted=persisted,
        )

    @staticmethod
    def _validate_amount(operation: str, amount) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmountException(operation, amount)

    @staticmethod
    def _validate_source(source_type: str) -> None:
        if source_type not in SOURCE_TYPES:
            raise ValidationException(
                "source_type", f"unknown source {source_type!r}"
            )

    @staticmethod
    def _coerce_metadata(metadata: MetadataInput) -> Optional[TransactionMetadata]:
        if metadata is None or isinstance(metadata, TransactionMetadata):
            return metadata
        try:
            return TransactionMetadata.model_validate(metadata)
        except ValidationError as e:
            raise ValidationException("metadata", str(e)) from e
