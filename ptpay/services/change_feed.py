from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import uuid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeSignal:
    """Something changed in ``table`` for ``coach_id``; refetch, do not merge."""

    table: str
    coach_id: uuid.UUID | None


class ChangeFeed:
    """In-process invalidation channel keyed by table and coach."""

    def __init__(self, max_pending: int = 100) -> None:
        self._subscribers: dict[tuple[str, uuid.UUID | None], set[asyncio.Queue[ChangeSignal]]] = {}
        self._max_pending = max_pending

    def subscribe(self, table: str, coach_id: uuid.UUID | None = None) -> asyncio.Queue[ChangeSignal]:
        queue: asyncio.Queue[ChangeSignal] = asyncio.Queue(maxsize=self._max_pending)
        self._subscribers.setdefault((table, coach_id), set()).add(queue)
        return queue

    def unsubscribe(self, table: str, coach_id: uuid.UUID | None, queue: asyncio.Queue[ChangeSignal]) -> None:
        queues = self._subscribers.get((table, coach_id))
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            self._subscribers.pop((table, coach_id), None)

    def publish(self, table: str, coach_id: uuid.UUID | None = None) -> int:
        signal = ChangeSignal(table=table, coach_id=coach_id)
        targets = set(self._subscribers.get((table, coach_id), set()))
        if coach_id is not None:
            # Table-wide subscribers hear every coach.
            targets |= self._subscribers.get((table, None), set())
        delivered = 0
        for queue in targets:
            if queue.full():
                # A pending signal already tells this subscriber to refetch.
                continue
            queue.put_nowait(signal)
            delivered += 1
        logger.debug("Change signal %s/%s delivered to %s subscribers", table, coach_id, delivered)
        return delivered


change_feed = ChangeFeed()
