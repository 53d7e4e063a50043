from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from .ledger import Ledger
from .models import SYNTHETIC_TYPES, Transaction, TransactionInput

logger = logging.getLogger("arogya.generator")


class ActivityGenerator:
    """Periodically injects synthetic query/audit/consent activity."""

    def __init__(
        self,
        ledger: Ledger,
        *,
        interval: float = 5.0,
        probability: float = 0.3,
    ) -> None:
        self._ledger = ledger
        self._interval = max(0.01, float(interval))
        self._probability = min(1.0, max(0.0, float(probability)))
        self._task: Optional[asyncio.Task[Any]] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="activity-generator")
        logger.info("GENERATOR_START interval=%s probability=%s", self._interval, self._probability)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("GENERATOR_STOP")

    async def tick(self) -> Optional[Transaction]:
        rng = self._ledger.rng
        if rng.random() >= self._probability:
            return None
        tx_type = rng.choice(SYNTHETIC_TYPES)
        return await self._ledger.record(
            TransactionInput(type=tx_type, record_id=self._ledger.synthetic_record_id())
        )

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                tx = await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("GENERATOR_TICK_FAILED")
                continue
            if tx is not None:
                logger.info("SYNTHETIC_TX id=%s type=%s record_id=%s", tx.id, tx.type.value, tx.record_id)
