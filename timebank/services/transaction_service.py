"""
Transaction query service.
Read-only lookups, summaries and audit checks over transaction lists.
Lists are expected most-recent-first, as the ledger returns them.
"""
from typing import List, Optional

from timebank.constants import (
    TRANSACTION_TYPE_EARN,
    TRANSACTION_TYPE_SPEND,
    TRANSACTION_TYPE_BONUS,
    TRANSACTION_TYPE_PENALTY,
    EARNING_TYPES,
    SPENDING_TYPES,
)
from timebank.exceptions import TransactionNotFoundException
from timebank.schemas import Transaction, TransactionSummary


class TransactionService:
    """Service for transaction queries"""

    @staticmethod
    def get_transaction_by_id(
        transaction_id: str,
        transactions: List[Transaction]
    ) -> Transaction:
        """
        Find a transaction by its ID.

        Raises:
            TransactionNotFoundException: If no transaction has that ID
        """
        for transaction in transactions:
            if transaction.id == transaction_id:
                return transaction
        raise TransactionNotFoundException(transaction_id)

    @staticmethod
    def get_transactions_by_type(
        transaction_type: str,
        transactions: List[Transaction]
    ) -> List[Transaction]:
        return [t for t in transactions if t.type == transaction_type]

    @staticmethod
    def get_transactions_by_source(
        source_type: str,
        transactions: List[Transaction]
    ) -> List[Transaction]:
        return [t for t in transactions if t.source_type == source_type]

    @staticmethod
    def get_recent_transactions(
        transactions: List[Transaction],
        count: int = 10
    ) -> List[Transaction]:
        """Newest first by timestamp; ties keep their log order"""
        ordered = sorted(transactions, key=lambda t: t.timestamp, reverse=True)
        return ordered[:count]

    @staticmethod
    def get_transaction_summary(transactions: List[Transaction]) -> TransactionSummary:
        """
        Totals per transaction type.

        Spend and penalty totals are reported as positive magnitudes.
        """
        summary = TransactionSummary()
        for transaction in transactions:
            if transaction.type == TRANSACTION_TYPE_EARN:
                summary.total_earned += transaction.amount
            elif transaction.type == TRANSACTION_TYPE_SPEND:
                summary.total_spent += abs(transaction.amount)
            elif transaction.type == TRANSACTION_TYPE_BONUS:
                summary.total_bonuses += transaction.amount
            elif transaction.type == TRANSACTION_TYPE_PENALTY:
                summary.total_penalties += abs(transaction.amount)
            summary.transaction_count += 1
        return summary

    @staticmethod
    def calculate_balance(
        transactions: List[Transaction],
        starting_balance: int = 0
    ) -> int:
        """Fold signed amounts onto starting_balance"""
        return starting_balance + sum(t.amount for t in transactions)

    @staticmethod
    def replay_balances(
        transactions: List[Transaction],
        starting_balance: Optional[int] = None
    ) -> List[int]:
        """
        Running balance after each transaction, oldest first.

        Args:
            transactions: Most-recent-first log
            starting_balance: Balance before the oldest entry; derived from
                the oldest entry when omitted (the log may be truncated)
        """
        chronological = list(reversed(transactions))
        if not chronological:
            return []
        if starting_balance is None:
            oldest = chronological[0]
            starting_balance = oldest.balance_after - oldest.amount

        balances = []
        balance = starting_balance
        for transaction in chronological:
            balance += transaction.amount
            balances.append(balance)
        return balances

    @staticmethod
    def find_audit_mismatches(
        transactions: List[Transaction],
        starting_balance: Optional[int] = None
    ) -> List[str]:
        """IDs of transactions whose stored balance_after disagrees with the replay"""
        replayed = TransactionService.replay_balances(transactions, starting_balance)
        chronological = list(reversed(transactions))
        return [
            transaction.id
            for transaction, expected in zip(chronological, replayed)
            if transaction.balance_after != expected
        ]

    @staticmethod
    def verify_audit_trail(
        transactions: List[Transaction],
        starting_balance: Optional[int] = None
    ) -> bool:
        return not TransactionService.find_audit_mismatches(transactions, starting_balance)

    @staticmethod
    def is_earning_type(transaction_type: str) -> bool:
        return transaction_type in EARNING_TYPES

    @staticmethod
    def is_spending_type(transaction_type: str) -> bool:
        return transaction_type in SPENDING_TYPES

    @staticmethod
    def format_minutes(minutes: int) -> str:
        """
        Human-readable duration of the magnitude.

        Examples: 45 -> "45m", 120 -> "2h", 150 -> "2h 30m"
        """
        hours, mins = divmod(abs(minutes), 60)
        if hours == 0:
            return f"{mins}m"
        if mins == 0:
            return f"{hours}h"
        return f"{hours}h {mins}m"

    @staticmethod
    def format_amount(amount: int) -> str:
        """Signed duration, e.g. "+30m" or "-1h 5m" """
        sign = "+" if amount >= 0 else "-"
        return f"{sign}{TransactionService.format_minutes(amount)}"
