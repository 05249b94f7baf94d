from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class OrderStatus(str, Enum):
    """Order state machine. The worker only ever acts on NEW."""
    NEW = "NEW"
    PROCESSED = "PROCESSED"
    CANCELLED = "CANCELLED"
    ERROR_JMS = "ERROR_JMS"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Order:
    customer_name: str
    product_name: str
    quantity: int
    status: OrderStatus = OrderStatus.NEW
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    id: Optional[int] = None

    def copy(self) -> "Order":
        return replace(self)

    def mark_processed(self, when: datetime):
        self.status = OrderStatus.PROCESSED
        self.processed_at = when

    def reset_for_reprocessing(self):
        self.status = OrderStatus.NEW
        self.processed_at = None
