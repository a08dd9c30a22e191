"""
Accrual Ledger

Virtual currency balances that grow over time for users who opt in:
- Accounts in whole cents plus an exact fractional remainder
- Periodic crediting of enrolled accounts
- Write-through persistence of the full ledger snapshot
- One lock serializing every read, mutation and write
"""

from .models import (
    Account,
    LedgerSnapshot,
    UserBalance,
)
from .scheduler import AccrualScheduler, SchedulerState, per_tick_amount
from .service import (
    LedgerService,
    LedgerServiceError,
    InvalidCreditAmountError,
    InvalidUserIdError,
)
from .storage import (
    InMemoryStorage,
    JsonFileStorage,
    SnapshotStorage,
    StorageError,
    StorageWriteError,
)

__all__ = [
    "Account",
    "LedgerSnapshot",
    "UserBalance",
    "AccrualScheduler",
    "SchedulerState",
    "per_tick_amount",
    "LedgerService",
    "LedgerServiceError",
    "InvalidCreditAmountError",
    "InvalidUserIdError",
    "InMemoryStorage",
    "JsonFileStorage",
    "SnapshotStorage",
    "StorageError",
    "StorageWriteError",
]
