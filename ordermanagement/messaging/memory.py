import logging
import queue
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ordermanagement.messaging import Action, Consumer, Disposition, Handler, OrderQueue

logger = logging.getLogger(__name__)


@dataclass
class Delivery:
    body: str
    retries: int = 0


class InMemoryOrderQueue(OrderQueue):
    """
    In-process queue with the same at-least-once semantics as the broker:
    RETRY and a raising handler both put the message back. Retry delays are
    not simulated, the message is immediately available again.
    """

    def __init__(self):
        self._queues: Dict[str, "queue.Queue[Delivery]"] = {}
        self._lock = threading.Lock()
        self.dead_letters: Dict[str, List[Tuple[str, Optional[str]]]] = {}

    def _queue(self, destination: str) -> "queue.Queue[Delivery]":
        with self._lock:
            if destination not in self._queues:
                self._queues[destination] = queue.Queue()
            return self._queues[destination]

    def publish(self, destination: str, message: str, retries: int = 0):
        self._queue(destination).put(Delivery(body=str(message), retries=retries))
        logger.debug(f"published {message!r} to {destination} retries={retries}")

    def get(self, destination: str, timeout: Optional[float] = None) -> Optional[Delivery]:
        try:
            if timeout is None:
                return self._queue(destination).get_nowait()
            return self._queue(destination).get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self, destination: str) -> List[str]:
        """Snapshot of message bodies waiting on destination."""
        q = self._queue(destination)
        with q.mutex:
            return [d.body for d in q.queue]

    def dead_letter(self, destination: str, body: str, reason: Optional[str]):
        with self._lock:
            self.dead_letters.setdefault(destination, []).append((body, reason))

    def consumer(self, destination: str, handler: Handler, name: Optional[str] = None) -> "InMemoryConsumer":
        return InMemoryConsumer(self, destination, handler, name)


class InMemoryConsumer(Consumer):

    def __init__(self, order_queue: InMemoryOrderQueue, destination: str, handler: Handler, name=None):
        super().__init__(destination, handler, name)
        self.queue = order_queue
        self._stop = threading.Event()

    def start(self):
        logger.info(f"[{self.name}] consuming {self.destination} (in-memory)")
        while not self._stop.is_set():
            delivery = self.queue.get(self.destination, timeout=0.1)
            if delivery is not None:
                self.deliver(delivery)

    def stop(self):
        self._stop.set()

    def drain(self) -> int:
        """Deliver everything currently available, including redeliveries."""
        count = 0
        while True:
            delivery = self.queue.get(self.destination)
            if delivery is None:
                return count
            self.deliver(delivery)
            count += 1

    def deliver(self, delivery: Delivery):
        self.metrics["received"] += 1
        try:
            disposition = self.handler(delivery.body, delivery.retries)
        except Exception as e:
            logger.error(f"[{self.name}] handler crashed, requeueing body={delivery.body!r} err={e}")
            self.queue.publish(self.destination, delivery.body, retries=delivery.retries)
            self.metrics["requeued"] += 1
            return
        self._apply(delivery, disposition)

    def _apply(self, delivery: Delivery, disposition: Disposition):
        if disposition.action == Action.RETRY:
            self.queue.publish(self.destination, delivery.body, retries=disposition.retries)
            self.metrics["retried"] += 1
        elif disposition.action == Action.DEAD_LETTER:
            self.queue.dead_letter(self.destination, delivery.body, disposition.reason)
            self.metrics["dead_lettered"] += 1
        else:
            self.metrics["acked"] += 1
