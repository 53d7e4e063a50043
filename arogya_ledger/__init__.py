"""Bounded health-record activity ledger with live fan-out to observers."""

from .broadcaster import LedgerBroadcaster
from .generator import ActivityGenerator
from .ledger import Ledger, StatsAggregator, TransactionLog
from .models import (
    LedgerStats,
    StreamEnvelope,
    Transaction,
    TransactionInput,
    TransactionStatus,
    TransactionType,
)

__all__ = [
    "ActivityGenerator",
    "Ledger",
    "LedgerBroadcaster",
    "LedgerStats",
    "StatsAggregator",
    "StreamEnvelope",
    "Transaction",
    "TransactionInput",
    "TransactionLog",
    "TransactionStatus",
    "TransactionType",
]
