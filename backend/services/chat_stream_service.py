# backend/services/chat_stream_service.py

import asyncio
from typing import Any, AsyncIterator, Dict

from backend.agents.chat.graph import CHAT_GRAPH_DEFINITION, compiled_chat_app
from backend.core.graph_executor import resolve_successor, run_streaming
from backend.core.state import merge_state
from backend.core.token_channel import (
    EVENT_ERROR,
    EVENT_MESSAGE_END,
    EVENT_STAGE,
    StreamEvent,
    TokenChannel,
)
from backend.services.chat_service import ChatService
from backend.utils.logger import get_logger

logger = get_logger(__name__)

# Nodes without an entry here (identity, quality) emit no stage event
STAGE_MESSAGES = {
    "router": "Looking for cues...",
    "retrieval": "Reviewing document...",
    "generator": "Generating response...",
}


def stage_event(node_name: str, attempt: int = 0) -> StreamEvent:
    return StreamEvent(EVENT_STAGE, {"stage": node_name, "message": STAGE_MESSAGES[node_name], "attempt": attempt})


class ChatStreamService:
    """
    Streams one chat turn as stage / token / message_end / error events.

    The workflow runs in its own task and publishes into a TokenChannel; the
    consumer iterates the channel. Closing the consumer early cancels the task.
    A generator stage with attempt > 0, or a token with replace=True, means
    the client should discard the partial answer it is showing.
    """

    def __init__(self, chat_service: ChatService):
        self.chat_service = chat_service

    async def stream_message(self, conversation_id: str, content: str) -> AsyncIterator[StreamEvent]:
        channel = TokenChannel()
        _, state = self.chat_service.prepare_turn(conversation_id, content, token_channel=channel)
        task = asyncio.create_task(self._run_turn(channel, conversation_id, state))

        try:
            async for event in channel:
                yield event
        finally:
            if not task.done():
                logger.info("Stream consumer went away, cancelling turn (%s)", conversation_id)
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _run_turn(self, channel: TokenChannel, conversation_id: str, state: Dict[str, Any]):
        current: Dict[str, Any] = dict(state)
        try:
            await channel.publish(stage_event("router"))

            async for node_name, patch in run_streaming(compiled_chat_app, state):
                current = merge_state(current, patch)
                upcoming = resolve_successor(CHAT_GRAPH_DEFINITION, node_name, current)
                if upcoming in STAGE_MESSAGES:
                    await channel.publish(stage_event(upcoming, int(current.get("retry_count") or 0)))

            message = self.chat_service.complete_turn(conversation_id, current)
            await channel.publish(StreamEvent(EVENT_MESSAGE_END, {"message": message.model_dump()}))

        except asyncio.CancelledError:
            logger.info("Chat turn cancelled (%s)", conversation_id)
            raise
        except Exception as e:
            logger.error("Chat stream failed (%s): %s", conversation_id, e, exc_info=True)
            await channel.publish(StreamEvent(EVENT_ERROR, {"error": str(e)}))
        finally:
            channel.close()
