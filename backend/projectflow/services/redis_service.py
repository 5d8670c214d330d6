"""Redis service for the realtime change feed and token blacklisting"""

import redis.asyncio as redis
from redis.asyncio.client import PubSub
from typing import Optional
from projectflow.config import settings


class RedisService:
    """Service for Redis operations shared by the auth and realtime services"""

    _client: Optional[redis.Redis] = None

    @classmethod
    async def get_client(cls) -> redis.Redis:
        """Get or create Redis client"""
        if cls._client is None:
            cls._client = await redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
        return cls._client

    @classmethod
    async def close(cls):
        """Close Redis connection"""
        if cls._client:
            await cls._client.aclose()
            cls._client = None

    async def blacklist_token(self, token: str, expiration_seconds: int):
        """
        Add a token to the blacklist

        Args:
            token: JWT token to blacklist
            expiration_seconds: How long to keep the token in blacklist (should match token expiration)
        """
        client = await self.get_client()
        key = f"blacklist:{token}"
        await client.setex(key, max(expiration_seconds, 1), "1")

    async def is_token_blacklisted(self, token: str) -> bool:
        """
        Check if a token is blacklisted

        Args:
            token: JWT token to check

        Returns:
            True if token is blacklisted, False otherwise
        """
        client = await self.get_client()
        key = f"blacklist:{token}"
        result = await client.get(key)
        return result is not None

    async def publish(self, channel: str, message: str) -> int:
        """
        Publish a message on a pub/sub channel

        Args:
            channel: Channel name
            message: Serialized message

        Returns:
            Number of subscribers that received the message
        """
        client = await self.get_client()
        return await client.publish(channel, message)

    async def open_pubsub(self, channel: str) -> PubSub:
        """
        Open a pub/sub connection subscribed to one channel

        Args:
            channel: Channel name

        Returns:
            Subscribed PubSub object; the caller owns and closes it
        """
        client = await self.get_client()
        pubsub = client.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(channel)
        return pubsub
