"""Realtime change feed over Redis pub/sub, one channel per table"""

import asyncio
import inspect
import logging
from contextlib import suppress
from typing import Awaitable, Callable, Optional, Union

from pydantic import ValidationError
from redis.asyncio.client import PubSub

from projectflow.config import settings
from projectflow.schemas.realtime import ChangeEvent
from projectflow.services.redis_service import RedisService

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


class RealtimeError(Exception):
    """Realtime feed error"""
    pass


class RealtimeChannel:
    """An open subscription to one table's change stream"""

    def __init__(self, table: str, channel_name: str, pubsub: PubSub, task: asyncio.Task):
        self.table = table
        self.channel_name = channel_name
        self.pubsub = pubsub
        self.task = task

    @property
    def active(self) -> bool:
        return not self.task.done()

    def __repr__(self):
        return f"<RealtimeChannel(table={self.table}, active={self.active})>"


class RealtimeService:
    """
    Publishes committed row changes and delivers them to subscribers.

    Delivery is at-least-once from the subscriber's point of view and carries
    no ordering guarantee across tables. Transport failures end the listener
    and are logged; reconnecting is left to the caller.
    """

    def __init__(self, redis_service: RedisService, channel_prefix: Optional[str] = None):
        self.redis = redis_service
        self.channel_prefix = channel_prefix or settings.realtime_channel_prefix

    def channel_name(self, table: str) -> str:
        return f"{self.channel_prefix}:{table}"

    async def publish(self, event: ChangeEvent) -> int:
        """
        Publish a change event on its table's channel.

        Args:
            event: Committed change

        Returns:
            Number of subscribers that received the event

        Raises:
            RealtimeError: If the message could not be published
        """
        channel = self.channel_name(event.table)
        try:
            receivers = await self.redis.publish(channel, event.model_dump_json())
        except Exception as e:
            logger.error(f"Failed to publish {event.kind.value} on {channel}: {e}")
            raise RealtimeError(f"Failed to publish change event: {e}")

        logger.debug(f"Published {event.kind.value} on {channel} to {receivers} subscriber(s)")
        return receivers

    async def subscribe(self, table: str, on_change: ChangeHandler) -> RealtimeChannel:
        """
        Subscribe to a table's change stream.

        Args:
            table: Table name
            on_change: Called with each ChangeEvent; may be a coroutine function

        Returns:
            Handle to pass to unsubscribe()
        """
        channel = self.channel_name(table)
        try:
            pubsub = await self.redis.open_pubsub(channel)
        except Exception as e:
            logger.error(f"Failed to subscribe to {channel}: {e}")
            raise RealtimeError(f"Failed to subscribe to {table}: {e}")

        task = asyncio.create_task(self._listen(table, pubsub, on_change))
        logger.info(f"Subscribed to realtime channel {channel}")
        return RealtimeChannel(table, channel, pubsub, task)

    async def unsubscribe(self, channel: RealtimeChannel) -> None:
        """Stop the listener and close the pub/sub connection"""
        channel.task.cancel()
        with suppress(asyncio.CancelledError):
            await channel.task

        try:
            await channel.pubsub.unsubscribe(channel.channel_name)
            await channel.pubsub.aclose()
        except Exception as e:
            logger.warning(f"Error closing realtime channel {channel.channel_name}: {e}")

        logger.info(f"Unsubscribed from realtime channel {channel.channel_name}")

    async def _listen(self, table: str, pubsub: PubSub, on_change: ChangeHandler) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                await self._dispatch(table, message["data"], on_change)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Realtime listener for {table} stopped: {e}")

    async def _dispatch(self, table: str, payload: str, on_change: ChangeHandler) -> None:
        try:
            event = ChangeEvent.model_validate_json(payload)
        except ValidationError as e:
            logger.warning(f"Dropping malformed change event on {table}: {e}")
            return

        try:
            result = on_change(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Change handler for {table} failed on {event.kind.value}")
