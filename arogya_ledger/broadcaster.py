from __future__ import annotations

import asyncio
import logging
from typing import Set

from .ledger import Ledger
from .models import (
    CHANNEL_NEW_TRANSACTION,
    CHANNEL_STATS_UPDATE,
    CHANNEL_TRANSACTIONS_UPDATE,
    LedgerStats,
    StreamEnvelope,
    Transaction,
)

logger = logging.getLogger("arogya.broadcaster")


class LedgerBroadcaster:
    """Fans ledger mutations out to per-subscriber queues."""

    def __init__(self, ledger: Ledger, *, subscriber_queue_size: int = 256) -> None:
        self._ledger = ledger
        self._subscriber_queue_size = max(8, int(subscriber_queue_size))
        self._subscribers: Set["asyncio.Queue[StreamEnvelope]"] = set()
        self._hook_registered = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def attach(self) -> None:
        if self._hook_registered:
            return
        self._ledger.add_publish_hook(self.publish)
        self._hook_registered = True

    def subscribe(self) -> "asyncio.Queue[StreamEnvelope]":
        queue: "asyncio.Queue[StreamEnvelope]" = asyncio.Queue(maxsize=self._subscriber_queue_size)
        self._enqueue_subscriber(
            queue,
            StreamEnvelope.build(event=CHANNEL_STATS_UPDATE, data=self._ledger.stats()),
        )
        self._enqueue_subscriber(
            queue,
            StreamEnvelope.build(event=CHANNEL_TRANSACTIONS_UPDATE, data=self._ledger.transactions()),
        )
        self._subscribers.add(queue)
        logger.info("SUBSCRIBER_ADDED subscribers=%s", len(self._subscribers))
        return queue

    def unsubscribe(self, queue: "asyncio.Queue[StreamEnvelope]") -> None:
        if queue not in self._subscribers:
            return
        self._subscribers.discard(queue)
        logger.info("SUBSCRIBER_REMOVED subscribers=%s", len(self._subscribers))

    def publish(self, tx: Transaction, stats: LedgerStats) -> None:
        envelopes = (
            StreamEnvelope.build(event=CHANNEL_NEW_TRANSACTION, data=tx, timestamp=tx.timestamp),
            StreamEnvelope.build(event=CHANNEL_STATS_UPDATE, data=stats),
        )
        for subscriber in list(self._subscribers):
            try:
                for envelope in envelopes:
                    self._enqueue_subscriber(subscriber, envelope)
            except Exception:
                logger.warning("SUBSCRIBER_DELIVERY_FAILED tx_id=%s", tx.id, exc_info=True)
                self.unsubscribe(subscriber)

    @staticmethod
    def _enqueue_subscriber(queue: "asyncio.Queue[StreamEnvelope]", envelope: StreamEnvelope) -> None:
        if queue.full():
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            logger.debug("SUBSCRIBER_BUFFER_FULL dropped_oldest=1")
        queue.put_nowait(envelope)
