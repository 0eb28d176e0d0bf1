"""
State repository - Durable storage for the ledger snapshot.
The whole LedgerState is kept as one JSON blob under a string key.
"""
import json
import logging
from typing import Callable, Optional, Protocol

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from timebank.constants import DEFAULT_STORAGE_KEY, SPENDING_TYPES
from timebank.exceptions import PersistenceException, SnapshotCorruptedException
from timebank.models import StateEntry
from timebank.schemas import LedgerState

logger = logging.getLogger("timebank.store")


class StateStore(Protocol):
    """Key-value durable store holding one serialized LedgerState"""

    def load(self) -> Optional[LedgerState]:
        ...

    def save(self, state: LedgerState) -> None:
        ...


def serialize_state(state: LedgerState) -> str:
    """Encode a snapshot as JSON with canonical camelCase field names"""
    return state.model_dump_json(by_alias=True, exclude_none=True)


def deserialize_state(raw: str, key: str = DEFAULT_STORAGE_KEY) -> LedgerState:
    """
    Decode a stored snapshot.

    Accepts the persisted-store envelope {"state": {...}, "version": n}
    written by older clients, and spend/penalty amounts stored as positive
    magnitudes, which are turned into negative deltas.

    Raises:
        SnapshotCorruptedException: If the blob is not a valid snapshot
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise SnapshotCorruptedException(key, str(e)) from e

    if not isinstance(data, dict):
        raise SnapshotCorruptedException(key, "expected a JSON object")

    # Handle legacy envelope format
    if "balance" not in data and isinstance(data.get("state"), dict):
        data = data["state"]

    transactions = data.get("transactions")
    if isinstance(transactions, list):
        data["transactions"] = [_normalize_sign(item) for item in transactions]

    try:
        return LedgerState.model_validate(data)
    except ValidationError as e:
        raise SnapshotCorruptedException(key, str(e)) from e


def _normalize_sign(item):
    if not isinstance(item, dict):
        return item
    amount = item.get("amount")
    if item.get("type") in SPENDING_TYPES and isinstance(amount, int) and amount > 0:
        return {**item, "amount": -amount}
    return item


class SqlAlchemyStateStore:
    """Snapshot storage in the state_entries table, one session per call"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        key: str = DEFAULT_STORAGE_KEY
    ):
        self.session_factory = session_factory
        self.key = key

    def load(self) -> Optional[LedgerState]:
        """
        Load the stored snapshot.

        Returns:
            LedgerState, or None if nothing has been saved under the key

        Raises:
            PersistenceException: If the database query fails
            SnapshotCorruptedException: If the stored blob cannot be decoded
        """
        db = self.session_factory()
        try:
            entry = db.query(StateEntry).filter(StateEntry.key == self.key).first()
            raw = entry.value if entry else None
        except SQLAlchemyError as e:
            raise PersistenceException("load", str(e)) from e
        finally:
            db.close()

        if raw is None:
            return None
        return deserialize_state(raw, self.key)

    def save(self, state: LedgerState) -> None:
        """
        Insert or replace the snapshot.

        Raises:
            PersistenceException: If the write fails (the transaction is rolled back)
        """
        payload = serialize_state(state)
        db = self.session_factory()
        try:
            entry = db.query(StateEntry).filter(StateEntry.key == self.key).first()
            if entry is None:
                db.add(StateEntry(key=self.key, value=payload))
            else:
                entry.value = payload
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceException("save", str(e)) from e
        finally:
            db.close()
        logger.debug(f"Saved snapshot '{self.key}' ({len(payload)} bytes)")


class InMemoryStateStore:
    """Process-local store; keeps the serialized blob so round-trips match the database store"""

    def __init__(self, key: str = DEFAULT_STORAGE_KEY, value: Optional[str] = None):
        self.key = key
        self.value = value

    def load(self) -> Optional[LedgerState]:
        if self.value is None:
            return None
        return deserialize_state(self.value, self.key)

    def save(self, state: LedgerState) -> None:
        self.value = serialize_state(state)
