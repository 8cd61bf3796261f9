"""
offline_queue.py — Durable retry queue for messages no channel could take.

═══════════════════════════════════════════════════════════════════════════
DRAIN POLICY
═══════════════════════════════════════════════════════════════════════════

    enqueue()  → stored with attempt_count=0, durable before returning
    drain()    → for each queued message (oldest first):
                     push OK      → remove
                     push failed  → attempt_count += 1
                                    attempt_count ≥ MAX_RETRY_ATTEMPTS
                                        → drop + MessageDropped event
                                    else keep for the next drain

    • Drains retry push only. SMS was already the last synchronous resort
      when the message was queued; queued items wait for the network.
    • Each removal / increment is its own store transaction, so an
      interrupted drain leaves every unconfirmed message in the store.
    • A drain takes a snapshot, processes it, then re-checks the store for
      messages enqueued meanwhile. A drain requested while another runs
      is folded into the running one.
    • Drains are triggered by ConnectivityMonitor ONLINE transitions and
      run on a background worker, independent of the request that queued
      the message.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from backend.safecheck.alerts.channels.push import PushChannel
from backend.safecheck.alerts.connectivity import ConnectivityMonitor, Transition
from backend.safecheck.alerts.models import QueuedMessage
from backend.safecheck.core.config import settings
from backend.safecheck.core.errors import QueuePersistenceError, RetryExhaustedError
from backend.safecheck.core.events import EventBus, MessageDropped
from backend.safecheck.storage.base import QueueStore

logger = logging.getLogger(__name__)


@dataclass
class DrainReport:
    """What one drain() call did."""
    attempted: int = 0
    delivered: int = 0
    retained: int = 0
    dropped: int = 0
    skipped: bool = False       # another drain was already running
    interrupted: bool = False   # went offline mid-drain
    dropped_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "delivered": self.delivered,
            "retained": self.retained,
            "dropped": self.dropped,
            "skipped": self.skipped,
            "interrupted": self.interrupted,
            "dropped_ids": list(self.dropped_ids),
        }


class OfflineQueue:
    """
    Durable at-least-once-attempt retry for undeliverable messages.

    Parameters
    ----------
    store : QueueStore
        Backing store; must be durable for restart survival.
    push_channel : PushChannel
        The only channel used on drain.
    connectivity : ConnectivityMonitor | None
        If given, ONLINE transitions schedule a background drain.
    events : EventBus | None
        Receives MessageDropped for permanently failed messages.
    """

    def __init__(
        self,
        store: QueueStore,
        push_channel: PushChannel,
        *,
        connectivity: Optional[ConnectivityMonitor] = None,
        events: Optional[EventBus] = None,
        max_retry_attempts: Optional[int] = None,
        max_size: Optional[int] = None,
    ):
        self._store = store
        self._push = push_channel
        self._connectivity = connectivity
        self._events = events
        self.max_retry_attempts = (
            max_retry_attempts if max_retry_attempts is not None
            else settings.MAX_RETRY_ATTEMPTS
        )
        self.max_size = max_size if max_size is not None else settings.QUEUE_MAX_SIZE

        self._state_lock = threading.Lock()
        self._draining = False
        self._rerun_requested = False
        self._executor: Optional[ThreadPoolExecutor] = None

        if connectivity is not None:
            self._unsubscribe = connectivity.subscribe(self._on_transition)

    # ── Enqueue ──

    def enqueue(self, message: QueuedMessage) -> QueuedMessage:
        """
        Persist a message for later push delivery.

        Raises
        ------
        QueuePersistenceError
            Queue full or backing store failure.
        """
        message.attempt_count = 0
        message.last_error = None

        try:
            stored = self._store.append_if_below(message, self.max_size)
        except Exception as exc:
            raise QueuePersistenceError(
                str(exc), message_id=message.message_id,
            ) from exc
        if not stored:
            raise QueuePersistenceError("queue is full", max_size=self.max_size)

        logger.info(
            "Queued %s for %s: %s",
            message.message_id, message.recipient.recipient_id, message.title,
            extra={
                "message_id": message.message_id,
                "recipient_id": message.recipient.recipient_id,
                "channel": "queued",
            },
        )
        return message

    # ── Inspection ──

    def pending(self) -> List[QueuedMessage]:
        return self._store.list()

    def __len__(self) -> int:
        return self._store.count()

    # ── Drain ──

    def drain(self) -> DrainReport:
        """
        Retry every queued message via push.

        Safe to call concurrently with enqueue() and with itself.
        """
        with self._state_lock:
            if self._draining:
                self._rerun_requested = True
                logger.debug("Drain already running; folding request into it")
                return DrainReport(skipped=True)
            self._draining = True

        report = DrainReport()
        seen: Set[str] = set()

        try:
            while True:
                batch = [m for m in self._store.list() if m.message_id not in seen]
                if not batch:
                    with self._state_lock:
                        if not self._rerun_requested:
                            break
                        self._rerun_requested = False
                    continue

                for message in batch:
                    if self._connectivity is not None and not self._connectivity.is_online:
                        report.interrupted = True
                        logger.info(
                            "Went offline mid-drain after %d attempt(s); the rest stay queued",
                            report.attempted,
                        )
                        return report
                    seen.add(message.message_id)
                    self._retry_one(message, report)
        except QueuePersistenceError:
            raise
        except Exception as exc:
            raise QueuePersistenceError(f"drain aborted: {exc}") from exc
        finally:
            with self._state_lock:
                self._draining = False
                self._rerun_requested = False

        logger.info(
            "Drain complete: %d attempted, %d delivered, %d retained, %d dropped",
            report.attempted, report.delivered, report.retained, report.dropped,
        )
        return report

    def _retry_one(self, message: QueuedMessage, report: DrainReport) -> None:
        report.attempted += 1
        ok, error = self._attempt_push(message)

        if ok:
            self._store.remove(message.message_id)
            report.delivered += 1
            logger.info(
                "Delivered queued %s to %s",
                message.message_id, message.recipient.recipient_id,
                extra={"message_id": message.message_id, "channel": "push"},
            )
            return

        updated, dropped = self._store.record_failure(
            message.message_id, error, self.max_retry_attempts,
        )
        if updated is None:
            return  # removed by someone else meanwhile

        if not dropped:
            report.retained += 1
            logger.warning(
                "Retry %d/%d failed for %s: %s",
                updated.attempt_count, self.max_retry_attempts,
                message.message_id, error,
                extra={"message_id": message.message_id,
                       "attempt_count": updated.attempt_count},
            )
            return

        report.dropped += 1
        report.dropped_ids.append(message.message_id)
        exhausted = RetryExhaustedError(
            message.message_id, updated.attempt_count, error,
        )
        logger.error(
            "Dropping %s for %s: %s",
            message.message_id, message.recipient.recipient_id, exhausted.message,
            extra={"message_id": message.message_id,
                   "recipient_id": message.recipient.recipient_id,
                   "attempt_count": updated.attempt_count},
        )
        if self._events is not None:
            self._events.publish(MessageDropped(
                message_id=message.message_id,
                recipient_id=message.recipient.recipient_id,
                error=exhausted,
            ))

    def _attempt_push(self, message: QueuedMessage):
        if not message.recipient.has_push:
            return False, "No push address"
        try:
            return self._push.send(
                message.recipient.push_address,
                message.title,
                message.body,
                message.payload,
            )
        except Exception as exc:
            return False, f"{type(exc).__name__}: {exc}"

    # ── Background draining ──

    def _on_transition(self, transition: Transition) -> None:
        if transition == Transition.ONLINE:
            self.drain_async()

    def drain_async(self) -> Future:
        """Schedule a drain on the background worker."""
        with self._state_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="queue-drain",
                )
            executor = self._executor
        future = executor.submit(self.drain)
        future.add_done_callback(self._log_drain_failure)
        return future

    @staticmethod
    def _log_drain_failure(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Background drain failed: %s", exc)

    def shutdown(self, wait: bool = True) -> None:
        if self._connectivity is not None:
            self._unsubscribe()
        with self._state_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
