import logging
import math
import threading
from decimal import Decimal, ROUND_DOWN
from fractions import Fraction
from typing import Any, Optional

from .models import Account, LedgerSnapshot, UserBalance, to_fraction
from .storage import InMemoryStorage, SnapshotStorage, StorageWriteError

logger = logging.getLogger(__name__)

CENTS_PER_UNIT = 100
DISPLAY_QUANTUM = Decimal("0.01")


class LedgerServiceError(Exception):
    pass


class InvalidCreditAmountError(LedgerServiceError):
    pass


class InvalidUserIdError(LedgerServiceError):
    pass


class LedgerService:
    """Accounts and enrollment for the accrual ledger.

    Every public method runs under one lock owned by the instance, and the
    write-through save happens before the lock is released, so each operation
    is atomic with respect to all others, including the scheduler's ticks.
    """

    def __init__(self, storage: Optional[SnapshotStorage] = None):
        self.storage = storage if storage is not None else InMemoryStorage()
        self._lock = threading.Lock()
        self._state: LedgerSnapshot = self.storage.load()
        self.persistence_healthy = True

    def ensure_account(self, user_id: str) -> Account:
        self._check_user_id(user_id)
        with self._lock:
            account, created = self._get_or_create(user_id)
            if created:
                self._persist()
            return account.model_copy()

    def credit(self, user_id: str, amount: Any) -> Account:
        self._check_user_id(user_id)
        exact = self._check_amount(amount)

        with self._lock:
            account, _ = self._get_or_create(user_id)
            accumulated = account.remainder_cents + exact
            whole = math.floor(accumulated)
            account.balance_cents += whole
            account.remainder_cents = accumulated - whole
            self._persist()
            return account.model_copy()

    def get_balance(self, user_id: str) -> Decimal:
        with self._lock:
            account = self._state.users.get(user_id)
            if account is None:
                return Decimal(0)
            return _to_display_scale(account.total_cents)

    def get_account(self, user_id: str) -> Optional[Account]:
        with self._lock:
            account = self._state.users.get(user_id)
            return account.model_copy() if account is not None else None

    def get_user_balance(self, user_id: str) -> UserBalance:
        self._check_user_id(user_id)
        with self._lock:
            account, created = self._get_or_create(user_id)
            if created:
                self._persist()
            balance = _to_display_scale(account.total_cents)
            return UserBalance(
                user_id=user_id,
                balance=balance,
                display=format_display(balance),
                enrolled=user_id in self._state.enrolled,
            )

    def get_display_balance(self, user_id: str) -> str:
        return self.get_user_balance(user_id).display

    def enroll(self, user_id: str) -> bool:
        self._check_user_id(user_id)
        with self._lock:
            _, created = self._get_or_create(user_id)
            changed = user_id not in self._state.enrolled
            if changed:
                self._state.enrolled.add(user_id)
            if changed or created:
                self._persist()
            return changed

    def unenroll(self, user_id: str) -> bool:
        self._check_user_id(user_id)
        with self._lock:
            if user_id not in self._state.enrolled:
                return False
            self._state.enrolled.discard(user_id)
            self._persist()
            return True

    def is_enrolled(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._state.enrolled

    def list_enrolled(self) -> list[str]:
        with self._lock:
            return sorted(self._state.enrolled)

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return self._state.model_copy(deep=True)

    def flush(self) -> bool:
        with self._lock:
            return self._persist()

    def _get_or_create(self, user_id: str) -> tuple[Account, bool]:
        account = self._state.users.get(user_id)
        if account is not None:
            return account, False
        account = Account()
        self._state.users[user_id] = account
        return account, True

    def _persist(self) -> bool:
        # Caller must hold self._lock.
        try:
            self.storage.save(self._state)
        except StorageWriteError as e:
            self.persistence_healthy = False
            logger.error("Ledger write-through failed, in-memory state kept: %s", e)
            return False
        if not self.persistence_healthy:
            logger.info("Ledger write-through recovered")
        self.persistence_healthy = True
        return True

    @staticmethod
    def _check_user_id(user_id: str) -> None:
        if not isinstance(user_id, str) or not user_id.strip():
            raise InvalidUserIdError(f"Invalid user id: {user_id!r}")

    @staticmethod
    def _check_amount(amount: Any) -> Fraction:
        try:
            exact = to_fraction(amount)
        except (TypeError, ValueError, ZeroDivisionError) as e:
            raise InvalidCreditAmountError(f"Invalid credit amount {amount!r}: {e}") from e
        if exact < 0:
            raise InvalidCreditAmountError(f"Credit amount must be non-negative, got {amount}")
        return exact


def _to_display_scale(total_cents: Fraction) -> Decimal:
    units = total_cents / CENTS_PER_UNIT
    return Decimal(units.numerator) / Decimal(units.denominator)


def format_display(balance: Decimal) -> str:
    """Two-decimal display string; partial cents are never rounded up."""
    return str(balance.quantize(DISPLAY_QUANTUM, rounding=ROUND_DOWN))
