"""
Order Processing Worker.

    python -m ordermanagement.worker consume   # consume the order queue
    python -m ordermanagement.worker sweep     # re-enqueue stuck NEW orders once

handle() runs the pipeline for one payload and returns an explicit outcome;
dispatch() wraps it with the failure policy and tells the consumer what to do
with the message. Failures after the processing step are redelivered through
the retry queue with exponential backoff and the order stays NEW throughout.
"""

import logging
import re
import signal
import sys
import threading
import time
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from ordermanagement import config
from ordermanagement.bootstrap import build_queue, build_service, build_store, configure_logging
from ordermanagement.errors import MalformedMessageError, NotFoundError, StaleOrMissingOrderError
from ordermanagement.messaging import Action, Consumer, Disposition, OrderQueue
from ordermanagement.models import Order, OrderStatus, utcnow
from ordermanagement.store import OrderStore
from ordermanagement.utils.retry import call_with_retries

logger = logging.getLogger(__name__)

_ORDER_ID_RE = re.compile(r"[0-9]{1,19}")

# BIGSERIAL upper bound
MAX_ORDER_ID = 2 ** 63 - 1


class MessageOutcome(str, Enum):
    PROCESSED = "processed"
    MALFORMED = "malformed"
    MISSING = "missing"     # order deleted or never existed
    STALE = "stale"         # order no longer NEW (duplicate or superseded)


def parse_order_id(payload) -> int:
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessageError(f"payload is not utf-8: {e}") from e
    if not isinstance(payload, str):
        raise MalformedMessageError(f"unsupported payload type {type(payload).__name__}")

    text = payload.strip()
    if not _ORDER_ID_RE.fullmatch(text) or not 0 < int(text) <= MAX_ORDER_ID:
        raise MalformedMessageError(f"invalid order id in payload: {payload!r}")
    return int(text)


class OrderProcessingWorker:

    def __init__(
        self,
        store: OrderStore,
        processing_delay: float = config.PROCESSING_DELAY_SECONDS,
        max_retries: int = config.MAX_RETRIES,
        base_retry_ttl_ms: int = config.BASE_RETRY_TTL_MS,
        max_retry_ttl_ms: int = config.MAX_RETRY_TTL_MS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.processing_delay = processing_delay
        self.max_retries = max_retries
        self.base_retry_ttl_ms = base_retry_ttl_ms
        self.max_retry_ttl_ms = max_retry_ttl_ms
        self.clock = clock

    def process(self, order: Order):
        """The business work. Runs without any lock held."""
        logger.info(f"Processing order id={order.id} for customer={order.customer_name}")
        if self.processing_delay > 0:
            time.sleep(self.processing_delay)

    def handle(self, payload) -> MessageOutcome:
        """
        Raises:
            MalformedMessageError: payload is not an order id
            Exception: anything else is a genuine failure worth redelivery
        """
        order_id = parse_order_id(payload)

        order = call_with_retries(self.store.find_by_id, order_id)
        if order is None:
            logger.warning(f"[SKIP] no order found with id {order_id}")
            return MessageOutcome.MISSING

        if order.status != OrderStatus.NEW:
            logger.info(f"[SKIP] order={order_id} status={order.status.value} (expected NEW)")
            return MessageOutcome.STALE

        self.process(order)

        def mark_processed(o: Order):
            o.mark_processed(self.clock())

        try:
            call_with_retries(
                self.store.update, order_id, mark_processed, expected_status=OrderStatus.NEW
            )
        except StaleOrMissingOrderError as e:
            logger.info(f"[SKIP] order={order_id} changed while processing: {e}")
            return MessageOutcome.STALE
        except NotFoundError:
            logger.warning(f"[SKIP] order={order_id} deleted while processing")
            return MessageOutcome.MISSING

        logger.info(f"[OK] order id={order_id} marked as PROCESSED")
        return MessageOutcome.PROCESSED

    def retry_delay_ms(self, attempt: int) -> int:
        return min(self.max_retry_ttl_ms, self.base_retry_ttl_ms * (2 ** (attempt - 1)))

    def dispatch(self, payload, retries: int = 0) -> Disposition:
        """Handle one delivery; never raises."""
        try:
            outcome = self.handle(payload)
        except MalformedMessageError as e:
            logger.error(f"[DLQ] poison message discarded payload={payload!r} err={e}")
            return Disposition(Action.DEAD_LETTER, outcome=MessageOutcome.MALFORMED.value, reason=str(e))
        except Exception as e:
            logger.error(f"[ERROR] payload={payload!r} retries={retries} err={e}", exc_info=True)
            if retries < self.max_retries:
                next_retry = retries + 1
                ttl_ms = self.retry_delay_ms(next_retry)
                logger.info(f"[RETRY] payload={payload!r} -> retry={next_retry} ttl={ttl_ms}ms")
                return Disposition(Action.RETRY, retries=next_retry, delay_ms=ttl_ms, reason=str(e))
            logger.error(f"[DLQ] payload={payload!r} gave up after {retries} retries; order left NEW")
            return Disposition(Action.DEAD_LETTER, retries=retries, reason=str(e))

        return Disposition(Action.ACK, outcome=outcome.value, retries=retries)


# ---------------- Runtime ----------------
def run_consumers(
    queue: OrderQueue,
    worker: OrderProcessingWorker,
    destination: str = config.ORDER_QUEUE,
    concurrency: int = config.WORKER_CONCURRENCY,
) -> List[Consumer]:
    """
    Run `concurrency` consumers on their own threads until SIGINT/SIGTERM.
    Each consumer owns its broker connection; the worker itself is stateless.
    """
    consumers = [
        queue.consumer(destination, worker.dispatch, name=f"worker-{i}")
        for i in range(max(1, concurrency))
    ]
    threads = [
        threading.Thread(target=c.start, name=c.name, daemon=True) for c in consumers
    ]
    stop = threading.Event()

    def _signal_handler(sig, frame):
        logger.info("Shutdown signal received, stopping consumers...")
        stop.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    for t in threads:
        t.start()
    logger.info(f"[WORKER] {len(threads)} consumer(s) on {destination}")

    try:
        while not stop.is_set() and any(t.is_alive() for t in threads):
            stop.wait(1.0)
    finally:
        for c in consumers:
            c.stop()
        for t in threads:
            t.join(timeout=5.0)
        for c in consumers:
            logger.info(f"[WORKER] {c.name} metrics={c.get_metrics()}")
    return consumers


# ---------------- Main ----------------
def main(argv: Optional[List[str]] = None):
    argv = sys.argv[1:] if argv is None else argv
    mode = argv[0].strip().lower() if argv else "consume"

    configure_logging()
    if mode in ("consume", "worker"):
        store = build_store(require=True)
        run_consumers(build_queue(require=True), OrderProcessingWorker(store))
    elif mode in ("sweep", "recover"):
        store = build_store(require=True)
        service = build_service(store, build_queue(require=True))
        service.requeue_pending(config.RECOVERY_GRACE_SECONDS)
    else:
        print("Usage:")
        print("  python -m ordermanagement.worker consume   # consume the order queue")
        print("  python -m ordermanagement.worker sweep     # re-enqueue stuck NEW orders")
        sys.exit(2)


if __name__ == "__main__":
    main()
