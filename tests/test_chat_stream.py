import asyncio

from backend.core.token_channel import EVENT_ERROR, EVENT_MESSAGE_END, EVENT_STAGE, EVENT_TOKEN
from backend.services.chat_service import ChatService, source_key
from backend.services.chat_stream_service import STAGE_MESSAGES, ChatStreamService
from backend.storage import InMemoryRecordStore
from tests.fakes import FakeLLMGateway


async def _conversation(store, source_ids=("src-1",)):
    for source_id in source_ids:
        store.save(source_key(source_id), {"id": source_id, "name": f"{source_id}.txt"})
    service = ChatService(store)
    conversation, _ = await service.create_conversation(list(source_ids))
    return service, conversation


async def _collect(stream):
    return [event async for event in stream]


def _tokens_after_last_generator_stage(events):
    last_stage = max(
        i for i, event in enumerate(events) if event.type == EVENT_STAGE and event.data["stage"] == "generator"
    )
    text = ""
    for event in events[last_stage + 1:]:
        if event.type != EVENT_TOKEN:
            continue
        text = event.data["token"] if event.data.get("replace") else text + event.data["token"]
    return text


async def test_first_message_streams_stages_tokens_then_message_end(install_llm, fake_retriever):
    install_llm({"router": ["retrieve"], "rag_answer": ["Light drives it [1]. Bogus [8]."]})
    store = InMemoryRecordStore()
    chat_service, conversation = await _conversation(store)

    events = await _collect(ChatStreamService(chat_service).stream_message(conversation.id, "How does photosynthesis work?"))

    stages = [event.data["stage"] for event in events if event.type == EVENT_STAGE]
    assert stages == ["router", "retrieval", "generator"]
    assert events[0].data["message"] == STAGE_MESSAGES["router"]
    assert events[-1].type == EVENT_MESSAGE_END

    streamed = "".join(event.data["token"] for event in events if event.type == EVENT_TOKEN)
    final = events[-1].data["message"]
    assert streamed == final["content"] == "Light drives it [1]. Bogus ."
    assert final["role"] == "assistant"

    persisted = chat_service.get_messages(conversation.id)
    assert [message.role for message in persisted] == ["user", "assistant"]
    assert persisted[-1].content == final["content"]


async def test_regeneration_announces_a_new_generator_attempt(install_llm, fake_retriever):
    install_llm({
        "router": ["retrieve", "retrieve"],
        "rag_answer": ["first answer", "weak answer", "better answer"],
        "quality": ["poor", "good"],
    })
    store = InMemoryRecordStore()
    chat_service, conversation = await _conversation(store)
    stream_service = ChatStreamService(chat_service)
    await _collect(stream_service.stream_message(conversation.id, "What is chlorophyll?"))

    events = await _collect(stream_service.stream_message(conversation.id, "Why is it green?"))

    generator_attempts = [
        event.data["attempt"] for event in events if event.type == EVENT_STAGE and event.data["stage"] == "generator"
    ]
    assert generator_attempts == [0, 1]
    assert _tokens_after_last_generator_stage(events) == "better answer"
    assert events[-1].data["message"]["content"] == "better answer"
    assert len(chat_service.get_messages(conversation.id)) == 4


async def test_identity_reply_streams_without_generator_stage(install_llm, fake_retriever):
    install_llm()
    store = InMemoryRecordStore()
    chat_service, conversation = await _conversation(store)

    events = await _collect(ChatStreamService(chat_service).stream_message(conversation.id, "Who are you?"))

    assert [event.type for event in events] == [EVENT_STAGE, EVENT_TOKEN, EVENT_MESSAGE_END]


async def test_consumer_disconnect_cancels_the_running_turn(monkeypatch, fake_retriever):
    from backend.agents.chat import nodes as chat_nodes

    class BlockingLLM(FakeLLMGateway):
        cancelled = False

        async def generate_streaming(self, prompt, on_token, temperature=None):
            await on_token("partial ")
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                BlockingLLM.cancelled = True
                raise

    monkeypatch.setattr(chat_nodes.CHAT_COMPONENTS, "llm", BlockingLLM({"router": ["retrieve"]}))
    store = InMemoryRecordStore()
    chat_service, conversation = await _conversation(store)

    stream = ChatStreamService(chat_service).stream_message(conversation.id, "Explain the Calvin cycle")
    async for event in stream:
        if event.type == EVENT_TOKEN:
            break
    await stream.aclose()

    assert BlockingLLM.cancelled
    # only the user message was persisted
    assert [message.role for message in chat_service.get_messages(conversation.id)] == ["user"]


async def test_failure_after_generation_is_reported_as_error_event(install_llm, fake_retriever, monkeypatch):
    install_llm({"router": ["retrieve"]})
    store = InMemoryRecordStore()
    chat_service, conversation = await _conversation(store)

    def _broken_complete_turn(conversation_id, final_state):
        raise RuntimeError("store unavailable")

    monkeypatch.setattr(chat_service, "complete_turn", _broken_complete_turn)

    events = await _collect(ChatStreamService(chat_service).stream_message(conversation.id, "Explain the Calvin cycle"))

    assert events[-1].type == EVENT_ERROR
    assert events[-1].data["error"] == "store unavailable"
    assert all(event.type != EVENT_MESSAGE_END for event in events)
