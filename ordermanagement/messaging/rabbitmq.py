"""
RabbitMQ adapter built on pika's BlockingConnection.

Topology per destination (all durable):
    <destination>         main queue
    <destination>.retry   no consumers; expired messages dead-letter back to main
    <destination>.dlq     parked poison/exhausted messages

Retry count travels in the x-retries header, the DLQ reason in x-dlq-reason.
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple

import pika
import pika.exceptions

from ordermanagement.config import RABBIT_URL, RECONNECT_DELAY_SECONDS
from ordermanagement.errors import TransientInfrastructureError
from ordermanagement.messaging import Action, Consumer, Disposition, Handler, OrderQueue

logger = logging.getLogger(__name__)

BROKER_ERRORS = (pika.exceptions.AMQPError, OSError)


def retry_queue_name(destination: str) -> str:
    return f"{destination}.retry"


def dlq_name(destination: str) -> str:
    return f"{destination}.dlq"


def get_retry_count(properties: pika.BasicProperties) -> int:
    headers = (properties.headers if properties else None) or {}
    try:
        return int(headers.get("x-retries", 0))
    except (TypeError, ValueError):
        return 0


class RabbitOrderQueue(OrderQueue):

    def __init__(self, url: Optional[str] = None, reconnect_delay: float = RECONNECT_DELAY_SECONDS):
        self.url = url or RABBIT_URL
        if not self.url:
            raise RuntimeError("RABBIT_URL not set")
        self.reconnect_delay = reconnect_delay

    def _parameters(self) -> pika.URLParameters:
        params = pika.URLParameters(self.url)
        params.heartbeat = 30
        params.blocked_connection_timeout = 30
        return params

    def connect(self) -> Tuple[pika.BlockingConnection, Any]:
        connection = pika.BlockingConnection(self._parameters())
        return connection, connection.channel()

    def declare_queues(self, channel, destination: str):
        channel.queue_declare(queue=destination, durable=True)
        channel.queue_declare(queue=dlq_name(destination), durable=True)
        # No x-message-ttl here: every retry carries its own expiration.
        channel.queue_declare(
            queue=retry_queue_name(destination),
            durable=True,
            arguments={
                "x-dead-letter-exchange": "",
                "x-dead-letter-routing-key": destination,
            },
        )

    def publish(self, destination: str, message: str):
        connection = None
        try:
            connection, channel = self.connect()
            self.declare_queues(channel, destination)
            channel.confirm_delivery()
            channel.basic_publish(
                exchange="",
                routing_key=destination,
                body=str(message).encode("utf-8"),
                properties=pika.BasicProperties(
                    content_type="text/plain",
                    delivery_mode=2,  # persistent
                ),
                mandatory=True,
            )
            logger.info(f"published order={message} to {destination}")
        except BROKER_ERRORS as e:
            raise TransientInfrastructureError(f"publish to {destination} failed: {e}") from e
        finally:
            if connection is not None and connection.is_open:
                try:
                    connection.close()
                except BROKER_ERRORS as e:
                    logger.warning(f"closing publisher connection failed err={e}")

    def consumer(self, destination: str, handler: Handler, name: Optional[str] = None) -> "RabbitConsumer":
        return RabbitConsumer(self, destination, handler, name)


def publish_to_queue(
    channel,
    queue_name: str,
    body: bytes,
    properties: pika.BasicProperties,
    headers: Dict[str, Any],
    expiration_ms: Optional[int] = None,
):
    # per-message TTL: properties.expiration is a string in ms
    expiration = str(int(expiration_ms)) if expiration_ms is not None else None

    channel.basic_publish(
        exchange="",
        routing_key=queue_name,
        body=body,
        properties=pika.BasicProperties(
            delivery_mode=2,
            headers=headers,
            content_type=(properties.content_type if properties else None) or "text/plain",
            correlation_id=properties.correlation_id if properties else None,
            expiration=expiration,
        ),
    )


class RabbitConsumer(Consumer):
    """
    Reliable consumer:
    - manual acknowledgments, prefetch 1
    - RETRY republishes to the retry queue with a TTL, then acks
    - DEAD_LETTER republishes to the DLQ with the reason, then acks
    - a crashing handler or failed republish nacks with requeue
    - reconnects after broker failures until stop() is called
    """

    def __init__(self, order_queue: RabbitOrderQueue, destination: str, handler: Handler, name=None):
        super().__init__(destination, handler, name)
        self.queue = order_queue
        self.connection = None
        self.channel = None
        self.running = False

    def start(self):
        self.running = True
        while self.running:
            try:
                self.connection, self.channel = self.queue.connect()
                self.queue.declare_queues(self.channel, self.destination)
                self.channel.basic_qos(prefetch_count=1)
                if not self.running:
                    break
                self.channel.basic_consume(
                    queue=self.destination,
                    on_message_callback=self._message_callback,
                    auto_ack=False,
                )
                logger.info(f"[{self.name}] consuming {self.destination} ...")
                self.channel.start_consuming()
            except Exception as e:
                if not self.running:
                    break
                logger.warning(f"[{self.name}][WARN] consumer loop error (will reconnect) err={e}")
                time.sleep(self.queue.reconnect_delay)
            finally:
                self._close()
        logger.info(f"[{self.name}] stopped metrics={self.get_metrics()}")

    def stop(self):
        self.running = False
        connection, channel = self.connection, self.channel
        if connection is not None and connection.is_open and channel is not None:
            connection.add_callback_threadsafe(channel.stop_consuming)

    def _close(self):
        if self.connection is not None and self.connection.is_open:
            try:
                self.connection.close()
            except BROKER_ERRORS as e:
                logger.warning(f"[{self.name}] close failed err={e}")
        self.connection = None
        self.channel = None

    def _message_callback(self, ch, method, properties, body):
        delivery_tag = method.delivery_tag
        self.metrics["received"] += 1
        retries = get_retry_count(properties)
        payload = body.decode("utf-8", errors="replace")

        try:
            disposition = self.handler(payload, retries)
            self._apply(ch, body, properties, disposition)
        except Exception as e:
            logger.error(f"[{self.name}] delivery failed, requeueing body={payload!r} err={e}")
            ch.basic_nack(delivery_tag=delivery_tag, requeue=True)
            self.metrics["requeued"] += 1
            return

        ch.basic_ack(delivery_tag=delivery_tag)

    def _apply(self, ch, body: bytes, properties, disposition: Disposition):
        headers = dict((properties.headers if properties else None) or {})

        if disposition.action == Action.RETRY:
            headers["x-retries"] = disposition.retries
            headers["x-ttl-ms"] = disposition.delay_ms
            publish_to_queue(
                ch,
                retry_queue_name(self.destination),
                body,
                properties,
                headers,
                expiration_ms=disposition.delay_ms,
            )
            self.metrics["retried"] += 1
        elif disposition.action == Action.DEAD_LETTER:
            headers["x-dlq-reason"] = (disposition.reason or "")[:200]
            publish_to_queue(ch, dlq_name(self.destination), body, properties, headers)
            self.metrics["dead_lettered"] += 1
        else:
            self.metrics["acked"] += 1
