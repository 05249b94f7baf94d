"""Builds the process-wide infrastructure handles from config."""

import logging

from ordermanagement import config
from ordermanagement.db import PostgresOrderStore, init_db
from ordermanagement.messaging import OrderQueue
from ordermanagement.messaging.memory import InMemoryOrderQueue
from ordermanagement.messaging.rabbitmq import RabbitOrderQueue
from ordermanagement.service import OrderService
from ordermanagement.store import InMemoryOrderStore, OrderStore

logger = logging.getLogger(__name__)


def configure_logging(level: str = config.LOG_LEVEL):
    logging.basicConfig(level=level, format=config.LOG_FORMAT)
    # pika is chatty at INFO
    logging.getLogger("pika").setLevel(logging.WARNING)


def build_store(require: bool = False) -> OrderStore:
    """PostgreSQL when DATABASE_URL is set (or required), else in-memory."""
    if config.DATABASE_URL or require:
        store = PostgresOrderStore(config.DATABASE_URL)
        init_db(store.dsn)
        return store
    logger.warning("DATABASE_URL not set, using in-memory order store")
    return InMemoryOrderStore()


def build_queue(require: bool = False) -> OrderQueue:
    """RabbitMQ when RABBIT_URL is set (or required), else in-memory."""
    if config.RABBIT_URL or require:
        return RabbitOrderQueue(config.RABBIT_URL)
    logger.warning("RABBIT_URL not set, using in-memory order queue")
    return InMemoryOrderQueue()


def build_service(store: OrderStore, queue: OrderQueue) -> OrderService:
    return OrderService(store, queue, destination=config.ORDER_QUEUE)
