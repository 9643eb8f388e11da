"""Work queues for documentation post-processing jobs."""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from docgate.app.exceptions import QueueDispatchError


class WorkQueue(ABC):
    """Fire-and-forget message sink."""

    name: str = "queue"

    @abstractmethod
    async def send(self, message: str) -> None:
        """Hand a message to the queue.

        Raises:
            QueueDispatchError: If the message could not be accepted.
        """


class InMemoryWorkQueue(WorkQueue):
    """asyncio.Queue-backed queue for local runs and tests."""

    def __init__(self, name: str = "memory", maxsize: int = 0) -> None:
        self.name = name
        self.messages: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)

    async def send(self, message: str) -> None:
        try:
            self.messages.put_nowait(message)
        except asyncio.QueueFull as e:
            raise QueueDispatchError(self.name, "Queue is full") from e


class RedisWorkQueue(WorkQueue):
    """Redis list used as a queue; consumers pop from the other end (BRPOP)."""

    def __init__(self, redis_url: str, name: str) -> None:
        self.name = name
        self._redis_url = redis_url
        self._redis: Optional[aioredis.Redis] = None

    async def _get_client(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def send(self, message: str) -> None:
        try:
            client = await self._get_client()
            await client.lpush(self.name, message)
        except RedisError as e:
            raise QueueDispatchError(self.name, str(e)) from e

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
