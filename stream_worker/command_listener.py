"""
Command channel listener.

Subscribes to the Redis pub/sub channels the dashboard publishes immediate
start/stop requests on and forwards each request to the dispatch engine.
Delivery is at-least-once; duplicate starts are absorbed by the engine.
"""

import asyncio
import json
import logging
from typing import Any, Optional, Set, Union

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from stream_worker.dispatch import DispatchEngine, DispatchResult
from stream_worker.models import StartCommand, StopCommand

logger = logging.getLogger(__name__)


class CommandChannelListener:
    """Forwards control channel messages to the dispatch engine."""

    def __init__(
        self,
        redis_client: Redis,
        engine: DispatchEngine,
        start_channel: str = "stream:start",
        stop_channel: str = "stream:stop",
        reconnect_delay: float = 5.0,
        metrics: Optional[Any] = None,
    ):
        """
        Initialize command channel listener.

        Args:
            redis_client: Async Redis client (decode_responses=True)
            engine: Dispatch engine receiving requests
            start_channel: Channel carrying start requests
            stop_channel: Channel carrying stop requests
            reconnect_delay: Seconds to wait before resubscribing after a lost connection
            metrics: Optional metrics recorder
        """
        self.redis = redis_client
        self.engine = engine
        self.start_channel = start_channel
        self.stop_channel = stop_channel
        self.reconnect_delay = reconnect_delay
        self.metrics = metrics

        self._task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    @classmethod
    def from_url(cls, redis_url: str, engine: DispatchEngine, **kwargs: Any) -> "CommandChannelListener":
        """Create a listener with its own Redis client."""
        return cls(Redis.from_url(redis_url, decode_responses=True), engine, **kwargs)

    async def connect(self) -> None:
        """Verify Redis is reachable.

        Raises:
            redis.exceptions.ConnectionError: If Redis cannot be reached
        """
        await self.redis.ping()
        logger.info("Connected to Redis")

    async def handle_message(
        self, channel: str, data: Union[str, bytes]
    ) -> Optional[DispatchResult]:
        """
        Decode one message and forward it to the dispatch engine.

        Args:
            channel: Channel the message arrived on
            data: Raw JSON payload

        Returns:
            Dispatch result, or None if the message was dropped
        """
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")
        if self.metrics is not None:
            self.metrics.record_command(channel)

        try:
            payload = json.loads(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Dropping malformed message on {channel}: {e}")
            return None

        try:
            if channel == self.start_channel:
                command = StartCommand.model_validate(payload)
                logger.info(f"Received start request for stream {command.stream_id}")
                return await self.engine.request_start(
                    command.stream_id, command.video_path, command.platforms
                )

            if channel == self.stop_channel:
                command = StopCommand.model_validate(payload)
                logger.info(f"Received stop request for stream {command.stream_id}")
                return await self.engine.request_stop(command.stream_id)

        except ValidationError as e:
            logger.warning(f"Dropping invalid request on {channel}: {e.error_count()} error(s): {e}")
            return None

        logger.warning(f"Ignoring message on unexpected channel: {channel}")
        return None

    def _dispatch(self, channel: str, data: Union[str, bytes]) -> None:
        task = asyncio.create_task(self._handle_safely(channel, data))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _handle_safely(self, channel: str, data: Union[str, bytes]) -> None:
        try:
            await self.handle_message(channel, data)
        except Exception as e:
            logger.error(f"Error handling message on {channel}: {e}", exc_info=True)

    async def _listen_once(self) -> None:
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(self.start_channel, self.stop_channel)
            logger.info(f"Subscribed to {self.start_channel}, {self.stop_channel}")
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                self._dispatch(message["channel"], message["data"])
        finally:
            await pubsub.aclose()

    async def _run(self) -> None:
        while True:
            try:
                await self._listen_once()
            except asyncio.CancelledError:
                logger.info("Command listener cancelled")
                raise
            except (RedisConnectionError, RedisTimeoutError) as e:
                logger.error(
                    f"Lost Redis connection: {e}. Resubscribing in {self.reconnect_delay}s"
                )
            except Exception as e:
                logger.error(f"Error in command listener: {e}", exc_info=True)
            await asyncio.sleep(self.reconnect_delay)

    def start(self) -> None:
        """Start listening in the background."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="command-listener")

    async def stop(self) -> None:
        """Stop listening and wait for requests already being handled."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        logger.info("Command listener stopped")

    async def close(self) -> None:
        """Close the Redis client."""
        await self.redis.aclose()
