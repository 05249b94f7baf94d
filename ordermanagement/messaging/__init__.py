"""
Order Queue contract.

Producers publish the order id as a plain string. Consumers hand every
delivery to a handler `handler(payload, retries) -> Disposition` and apply the
returned disposition with their own broker mechanics. A handler that raises
is treated like a crashed consumer: the message is put back for redelivery.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional


class Action(str, Enum):
    ACK = "ack"                  # done with the message, drop it
    RETRY = "retry"              # redeliver later, after delay_ms
    DEAD_LETTER = "dead_letter"  # park it on the DLQ, never retry


@dataclass
class Disposition:
    action: Action
    outcome: Optional[str] = None
    retries: int = 0
    delay_ms: Optional[int] = None
    reason: Optional[str] = None


Handler = Callable[[str, int], Disposition]


class Consumer(ABC):
    """One logical consumer bound to a destination."""

    def __init__(self, destination: str, handler: Handler, name: Optional[str] = None):
        self.destination = destination
        self.handler = handler
        self.name = name or f"consumer-{destination}"
        self.metrics: Dict[str, int] = {
            "received": 0,
            "acked": 0,
            "retried": 0,
            "dead_lettered": 0,
            "requeued": 0,
        }

    @abstractmethod
    def start(self):
        """Consume until stop() is called (blocking)."""

    @abstractmethod
    def stop(self):
        pass

    def get_metrics(self) -> Dict[str, int]:
        return self.metrics.copy()


class OrderQueue(ABC):

    @abstractmethod
    def publish(self, destination: str, message: str):
        """
        Durably enqueue message. Returning means the broker accepted it.

        Raises:
            TransientInfrastructureError: broker unavailable or message refused
        """

    @abstractmethod
    def consumer(self, destination: str, handler: Handler, name: Optional[str] = None) -> Consumer:
        pass
