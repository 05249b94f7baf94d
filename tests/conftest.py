from datetime import datetime, timedelta, timezone

import pytest

from ordermanagement.messaging.memory import InMemoryOrderQueue
from ordermanagement.service import OrderService
from ordermanagement.store import InMemoryOrderStore
from ordermanagement.worker import OrderProcessingWorker

QUEUE = "order.process.test"


class FlakyStore(InMemoryOrderStore):
    """Fails the next `failures` updates with `error`."""

    def __init__(self, failures=1, error=None):
        super().__init__()
        self.failures = failures
        self.error = error or RuntimeError("disk on fire")

    def update(self, order_id, mutator, expected_status=None):
        if self.failures:
            self.failures -= 1
            raise self.error
        return super().update(order_id, mutator, expected_status)


class FakeClock:
    def __init__(self, start=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryOrderStore()


@pytest.fixture
def queue():
    return InMemoryOrderQueue()


@pytest.fixture
def service(store, queue, clock):
    return OrderService(store, queue, destination=QUEUE, clock=clock)


@pytest.fixture
def worker(store, clock):
    return OrderProcessingWorker(
        store,
        processing_delay=0,
        max_retries=3,
        base_retry_ttl_ms=10,
        max_retry_ttl_ms=50,
        clock=clock,
    )


@pytest.fixture
def consumer(queue, worker):
    return queue.consumer(QUEUE, worker.dispatch, name="test-worker")
