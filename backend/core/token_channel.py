"""
Ordered async channel between a running workflow and its transport.

The generator step only sees send_token(); the transport iterates the channel
and receives stage changes, tokens, and the final message in the exact order
they were published.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List

EVENT_STAGE = "stage"
EVENT_TOKEN = "token"
EVENT_MESSAGE_END = "message_end"
EVENT_ERROR = "error"

_CLOSED = object()


@dataclass(frozen=True)
class StreamEvent:
    type: str
    data: Dict[str, Any] = field(default_factory=dict)


class ChannelClosedError(RuntimeError):
    """Raised when publishing to a channel that was already closed."""


class TokenChannel:
    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def publish(self, event: StreamEvent) -> None:
        if self._closed:
            raise ChannelClosedError("token channel is closed")
        await self._queue.put(event)

    async def send_token(self, token: str, replace: bool = False) -> None:
        """replace=True tells the consumer to discard the partial content it holds."""
        data: Dict[str, Any] = {"token": token}
        if replace:
            data["replace"] = True
        await self.publish(StreamEvent(EVENT_TOKEN, data))

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "TokenChannel":
        return self

    async def __anext__(self) -> StreamEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def drain(self) -> List[StreamEvent]:
        """Collect every event up to close(). Used by non-interactive consumers."""
        return [event async for event in self]
