import logging

import aio_pika

logger = logging.getLogger(__name__)

EXCHANGE_NAME = "domain_events"


class RabbitPublisher:
    """
    Publishes match events to the platform's topic exchange.

    `publish` reports delivery as a bool so the notifier can hand a
    per-provider result back to the caller; broker failures never raise.
    """

    def __init__(self, url: str | None, exchange_name: str = EXCHANGE_NAME):
        self.url = url
        self.exchange_name = exchange_name
        self.enabled = bool(url)
        self._connection: aio_pika.abc.AbstractRobustConnection | None = None
        self._exchange: aio_pika.abc.AbstractExchange | None = None

    @property
    def connected(self) -> bool:
        return self._exchange is not None and self._connection is not None and not self._connection.is_closed

    def _reset(self):
        self._connection = None
        self._exchange = None

    async def connect(self):
        if not self.enabled or self.connected:
            return

        try:
            self._connection = await aio_pika.connect_robust(self.url)
            channel = await self._connection.channel(publisher_confirms=True)
            self._exchange = await channel.declare_exchange(
                self.exchange_name,
                aio_pika.ExchangeType.TOPIC,
                durable=True,
            )
        except Exception as e:
            logger.warning("RabbitMQ connect to exchange %s failed: %s", self.exchange_name, e)
            self._reset()
            raise

    async def _exchange_or_none(self) -> aio_pika.abc.AbstractExchange | None:
        try:
            await self.connect()
        except Exception:
            return None
        return self._exchange

    async def publish(self, routing_key: str, message_body: str) -> bool:
        if not self.enabled:
            return False

        exchange = await self._exchange_or_none()
        if exchange is None:
            return False

        msg = aio_pika.Message(
            body=message_body.encode("utf-8"),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        try:
            # with publisher confirms this returns once the broker has acked
            await exchange.publish(msg, routing_key=routing_key)
        except Exception as e:
            logger.warning("RabbitMQ publish of %s failed: %s", routing_key, e)
            return False
        return True

    async def close(self):
        try:
            if self._connection and not self._connection.is_closed:
                await self._connection.close()
        finally:
            self._reset()
