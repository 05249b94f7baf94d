import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from ordermanagement.config import ORDER_QUEUE, RECOVERY_GRACE_SECONDS
from ordermanagement.errors import NotFoundError, OrderError, ValidationError
from ordermanagement.messaging import OrderQueue
from ordermanagement.models import Order, OrderStatus, utcnow
from ordermanagement.store import OrderStore
from ordermanagement.utils.retry import call_with_retries

logger = logging.getLogger(__name__)


def _require_text(value, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} must not be empty")
    return str(value).strip()


def _optional_text(value, field: str) -> Optional[str]:
    """Blank means unchanged on update."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value.strip() or None


def _require_quantity(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Quantity must be an integer")
    if value <= 0:
        raise ValidationError("Quantity must be greater than zero")
    return value


def normalize_status(status: str) -> OrderStatus:
    normalized = str(status).strip().upper()
    try:
        return OrderStatus(normalized)
    except ValueError:
        raise ValidationError(f"Unsupported status: {status}") from None


class OrderService:
    """
    Order lifecycle: validates commands, applies them to the store and
    enqueues a processing trigger whenever an order enters or re-enters NEW.

    Store and queue handles are injected; the service holds no other state.
    """

    def __init__(
        self,
        store: OrderStore,
        queue: OrderQueue,
        destination: str = ORDER_QUEUE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.queue = queue
        self.destination = destination
        self.clock = clock

    def create(self, customer_name: str, product_name: str, quantity: int) -> Order:
        order = Order(
            customer_name=_require_text(customer_name, "Customer name"),
            product_name=_require_text(product_name, "Product name"),
            quantity=_require_quantity(quantity),
            status=OrderStatus.NEW,
            created_at=self.clock(),
        )

        # id must exist and be durable before anything is enqueued
        self.store.insert(order)
        logger.info(f"created order={order.id} customer={order.customer_name}")

        self._enqueue(order.id)
        return order

    def update(
        self,
        order_id: int,
        customer_name: Optional[str] = None,
        product_name: Optional[str] = None,
        quantity: Optional[int] = None,
        status: Optional[str] = None,
    ) -> Order:
        """
        Partial update; None leaves a field unchanged. Setting status NEW is a
        reprocessing request: processed_at is cleared and the order is
        re-enqueued whatever its previous status.
        """
        if quantity is not None:
            quantity = _require_quantity(quantity)

        customer_name = _optional_text(customer_name, "Customer name")
        product_name = _optional_text(product_name, "Product name")

        new_status = None
        if status is not None and str(status).strip():
            new_status = normalize_status(status)

        def apply(order: Order):
            if customer_name:
                order.customer_name = customer_name
            if product_name:
                order.product_name = product_name
            if quantity is not None:
                order.quantity = quantity
            if new_status == OrderStatus.NEW:
                order.reset_for_reprocessing()
            elif new_status is not None:
                order.status = new_status

        updated = self.store.update(order_id, apply)
        logger.info(f"updated order={order_id} status={updated.status.value}")

        if new_status == OrderStatus.NEW:
            self._enqueue(order_id)
        return updated

    def list(self) -> List[Order]:
        return call_with_retries(self.store.list_all_ordered_by_created_at_desc)

    def get(self, order_id: int) -> Order:
        order = call_with_retries(self.store.find_by_id, order_id)
        if order is None:
            raise NotFoundError(order_id)
        return order

    def delete(self, order_id: int) -> bool:
        deleted = self.store.delete(order_id)
        if deleted:
            logger.info(f"deleted order={order_id}")
        return deleted

    def requeue_pending(self, older_than_seconds: float = RECOVERY_GRACE_SECONDS) -> int:
        """
        Re-enqueue NEW orders created more than older_than_seconds ago.

        Recovery path for orders whose enqueue failed after they were stored.
        Duplicates are harmless: the worker only acts on orders still NEW.
        """
        cutoff = self.clock() - timedelta(seconds=older_than_seconds)
        pending = call_with_retries(self.store.list_by_status, OrderStatus.NEW, created_before=cutoff)

        requeued = sum(1 for order in pending if self._enqueue(order.id))
        logger.info(f"[SWEEP] requeued {requeued}/{len(pending)} NEW orders older than {cutoff.isoformat()}")
        return requeued

    def _enqueue(self, order_id: int) -> bool:
        # Not retried: the order stays NEW and is picked up by requeue_pending
        # or an explicit update(status=NEW).
        try:
            self.queue.publish(self.destination, str(order_id))
            return True
        except OrderError as e:
            logger.error(f"[ENQUEUE][ERROR] order={order_id} left NEW for recovery err={e}")
            return False
