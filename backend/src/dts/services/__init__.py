"""
Services package - Ledger components built on the store.

Includes the lifecycle engine, balance accountant, audit recorder,
receiver assignment and the read-side queries.
"""

from .accountant import BalanceAccountant
from .audit import AuditRecorder
from .bootstrap import LedgerServices
from .lifecycle import LifecycleEngine
from .queries import LedgerQueries

__all__ = ["AuditRecorder", "BalanceAccountant", "LedgerQueries", "LedgerServices", "LifecycleEngine"]
