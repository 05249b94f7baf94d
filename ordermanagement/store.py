"""
Order Store contract and the in-process implementation.

Every mutation goes through update(), which applies a mutator to the current
record as one atomic read-modify-write. Passing expected_status turns it into
a conditional update: ConflictError is raised if the stored status differs.
"""

import itertools
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ordermanagement.errors import ConflictError, NotFoundError
from ordermanagement.models import Order, OrderStatus

Mutator = Callable[[Order], None]


class OrderStore(ABC):

    @abstractmethod
    def insert(self, order: Order) -> int:
        """Persist a new order, assign and return its id."""

    @abstractmethod
    def find_by_id(self, order_id: int) -> Optional[Order]:
        pass

    @abstractmethod
    def update(
        self,
        order_id: int,
        mutator: Mutator,
        expected_status: Optional[OrderStatus] = None,
    ) -> Order:
        """
        Atomically load, mutate and save one order.

        Raises:
            NotFoundError: no order with that id
            ConflictError: expected_status given and the stored status differs
        """

    @abstractmethod
    def delete(self, order_id: int) -> bool:
        pass

    @abstractmethod
    def list_all_ordered_by_created_at_desc(self) -> List[Order]:
        pass

    @abstractmethod
    def list_by_status(
        self, status: OrderStatus, created_before: Optional[datetime] = None
    ) -> List[Order]:
        """Orders in a status, oldest first, optionally created before a cutoff."""


class InMemoryOrderStore(OrderStore):
    """
    Dict-backed store for tests and local runs.

    The lock only covers the read-modify-write itself. Records are copied in
    and out; callers never share a stored instance.
    """

    def __init__(self):
        self._orders: Dict[int, Order] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def insert(self, order: Order) -> int:
        with self._lock:
            order.id = next(self._ids)
            self._orders[order.id] = order.copy()
            return order.id

    def find_by_id(self, order_id: int) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return order.copy() if order else None

    def update(self, order_id, mutator, expected_status=None) -> Order:
        with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                raise NotFoundError(order_id)
            if expected_status is not None and current.status != expected_status:
                raise ConflictError(order_id, expected_status, current.status)

            working = current.copy()
            mutator(working)
            # id and created_at are immutable once assigned
            working.id = current.id
            working.created_at = current.created_at
            self._orders[order_id] = working
            return working.copy()

    def delete(self, order_id: int) -> bool:
        with self._lock:
            return self._orders.pop(order_id, None) is not None

    def list_all_ordered_by_created_at_desc(self) -> List[Order]:
        with self._lock:
            orders = [o.copy() for o in self._orders.values()]
        return sorted(orders, key=lambda o: (o.created_at, o.id), reverse=True)

    def list_by_status(self, status, created_before=None) -> List[Order]:
        with self._lock:
            orders = [
                o.copy()
                for o in self._orders.values()
                if o.status == status
                and (created_before is None or o.created_at < created_before)
            ]
        return sorted(orders, key=lambda o: (o.created_at, o.id))
