from __future__ import annotations

import asyncio
import inspect
import logging
import random
import string
import time
from collections import deque
from datetime import datetime, timezone
from itertools import count
from typing import Any, Callable, List, Optional

from .models import (
    SYNTHETIC_TYPES,
    LedgerStats,
    Transaction,
    TransactionInput,
    TransactionStatus,
    TransactionType,
)

LOG_CAPACITY = 20
TAMPER_PROBABILITY = 0.1
SYNTHETIC_RECORD_SPACE = 50

VERIFY_DETAILS = "SHA-256 hash verification completed"
DECRYPT_DETAILS = "AES-256 decryption completed for authorized access"

_HASH_ALPHABET = string.digits + string.ascii_lowercase

logger = logging.getLogger("arogya.ledger")

PublishHook = Callable[[Transaction, LedgerStats], Any]


class TransactionLog:
    """Newest-first ring of recent transactions."""

    def __init__(self, capacity: int = LOG_CAPACITY) -> None:
        self._entries: deque[Transaction] = deque(maxlen=max(1, int(capacity)))

    @property
    def capacity(self) -> int:
        return int(self._entries.maxlen or 0)

    def append(self, tx: Transaction) -> None:
        # deque(maxlen) drops from the right on appendleft
        self._entries.appendleft(tx)

    def snapshot(self) -> List[Transaction]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class StatsAggregator:
    def __init__(self, seed: Optional[LedgerStats] = None) -> None:
        self._stats = seed.copy() if seed is not None else LedgerStats()

    def increment_transaction_count(self) -> None:
        self._stats.total_transactions += 1

    def snapshot(self) -> LedgerStats:
        return self._stats.copy()


class Ledger:
    """Sole owner of the transaction log and stats.

    Every mutation goes through :meth:`record`, which appends, bumps the
    counter and runs the publish hooks under a single lock. Hooks therefore
    observe mutations in exactly the order they were applied.
    """

    def __init__(
        self,
        *,
        stats_seed: Optional[LedgerStats] = None,
        capacity: int = LOG_CAPACITY,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._log = TransactionLog(capacity)
        self._stats = StatsAggregator(stats_seed)
        self._rng = rng if rng is not None else random.Random()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._sequence = count(start=1)
        self._publish_hooks: List[PublishHook] = []

    @property
    def rng(self) -> random.Random:
        return self._rng

    def add_publish_hook(self, hook: PublishHook) -> None:
        self._publish_hooks.append(hook)

    async def record(self, tx_input: TransactionInput) -> Transaction:
        async with self._lock:
            tx = self._build(tx_input)
            self._log.append(tx)
            self._stats.increment_transaction_count()
            stats = self._stats.snapshot()
            logger.debug(
                "TX_RECORDED id=%s type=%s record_id=%s status=%s total=%s",
                tx.id,
                tx.type.value,
                tx.record_id,
                tx.status.value,
                stats.total_transactions,
            )
            await self._run_hooks(tx, stats)
        return tx

    def stats(self) -> LedgerStats:
        return self._stats.snapshot()

    def transactions(self) -> List[Transaction]:
        return self._log.snapshot()

    def transactions_for(self, record_id: str) -> List[Transaction]:
        needle = str(record_id).strip()
        return [tx for tx in self._log.snapshot() if tx.record_id == needle]

    async def _run_hooks(self, tx: Transaction, stats: LedgerStats) -> None:
        for hook in list(self._publish_hooks):
            try:
                result = hook(tx, stats.copy())
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("PUBLISH_HOOK_FAILED id=%s hook=%r", tx.id, hook)

    def _build(self, tx_input: TransactionInput) -> Transaction:
        tx_type = TransactionType(tx_input.type)
        common = {
            "id": self._next_id(),
            "type": tx_type,
            "timestamp": self._iso_now(),
        }

        if tx_type is TransactionType.ADD_RECORD:
            return Transaction(
                record_id=str(tx_input.record_id),
                status=TransactionStatus.SUCCESS,
                patient_name=tx_input.patient_name,
                condition=tx_input.condition,
                encrypted=True,
                hash=self._hash_token(),
                **common,
            )

        if tx_type is TransactionType.VERIFY_INTEGRITY:
            # simulated outcome; no real hash comparison backs this draw
            tampered = self._rng.random() <= TAMPER_PROBABILITY
            return Transaction(
                record_id=str(tx_input.record_id),
                status=TransactionStatus.TAMPERED if tampered else TransactionStatus.VALID,
                details=VERIFY_DETAILS,
                **common,
            )

        if tx_type is TransactionType.DECRYPT_RECORD:
            return Transaction(
                record_id=str(tx_input.record_id),
                status=TransactionStatus.SUCCESS,
                details=DECRYPT_DETAILS,
                **common,
            )

        if tx_type in SYNTHETIC_TYPES:
            return Transaction(
                record_id=tx_input.record_id or self.synthetic_record_id(),
                status=TransactionStatus.SUCCESS,
                automated=True,
                **common,
            )

        raise ValueError(f"Unsupported transaction type: {tx_type!r}")

    def synthetic_record_id(self) -> str:
        return f"REC{self._rng.randint(1, SYNTHETIC_RECORD_SPACE):03d}"

    def _next_id(self) -> str:
        millis = int(self._clock() * 1000)
        return f"tx_{millis}_{next(self._sequence)}"

    def _hash_token(self) -> str:
        return "hash_" + "".join(self._rng.choice(_HASH_ALPHABET) for _ in range(16))

    def _iso_now(self) -> str:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()
