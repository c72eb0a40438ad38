"""Inbound message queue feeding the bot handler.

Messages are sharded by sender over a fixed set of worker threads, so one
sender's messages are handled strictly in arrival order while different
senders run in parallel.
"""
import logging
import queue
import threading
import zlib
from typing import Any, Callable, List, Optional

from services.metrics import metrics, record_error
from services.models import InboundMessage
from wa_bot.logging import message_context

logger = logging.getLogger(__name__)

_STOP = object()


def worker_for(sender_key: str, workers: int) -> int:
    return zlib.crc32(str(sender_key).encode("utf-8")) % workers


class InboundChannel:
    def __init__(
        self,
        handler: Callable[[InboundMessage], Any],
        workers: int = 4,
        *,
        idle_interval: float = 60.0,
        on_idle: Optional[Callable[[], Any]] = None,
    ):
        self.handler = handler
        self.workers = max(1, int(workers))
        self.idle_interval = float(idle_interval)
        self.on_idle = on_idle
        self._queues: List["queue.Queue[Any]"] = [queue.Queue() for _ in range(self.workers)]
        self._threads: List[threading.Thread] = []
        self._closed = False
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        with self._lock:
            if self._threads:
                return
            for idx, q in enumerate(self._queues):
                thread = threading.Thread(
                    target=self._run_worker,
                    args=(idx, q),
                    name=f"inbound-worker-{idx}",
                    daemon=True,
                )
                thread.start()
                self._threads.append(thread)
        logger.info("Inbound channel started with %s workers", self.workers)

    def submit(self, message: InboundMessage) -> int:
        """Queue a message; returns the worker index it was routed to."""
        idx = worker_for(message.sender_key, self.workers)
        with self._lock:
            # Checked under the lock so nothing is queued behind the stop marker.
            if self._closed:
                raise RuntimeError("Inbound channel is stopped")
            self._queues[idx].put(message)
        metrics.increment("inbound_messages_total")
        return idx

    def join(self) -> None:
        """Block until every submitted message has been handled."""
        for q in self._queues:
            q.join()

    def stop(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for q in self._queues:
                q.put(_STOP)
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)
        logger.info("Inbound channel stopped")

    def _handle(self, message: InboundMessage) -> None:
        with message_context(message.message_id or None, message.sender_key):
            try:
                self.handler(message)
            except Exception as exc:
                logger.exception("Handler failed for message from %s", message.sender_key)
                record_error("channel", type(exc).__name__)

    def _idle(self) -> None:
        if self.on_idle is None:
            return
        try:
            self.on_idle()
        except Exception as exc:
            logger.error("Idle callback failed: %s", exc)
            record_error("channel", type(exc).__name__)

    def _run_worker(self, idx: int, q: "queue.Queue[Any]") -> None:
        while True:
            try:
                item = q.get(timeout=self.idle_interval)
            except queue.Empty:
                # Only one worker runs housekeeping.
                if idx == 0:
                    self._idle()
                continue
            try:
                if item is _STOP:
                    return
                self._handle(item)
            finally:
                q.task_done()
