from backend.agents.chat import nodes as chat_nodes
from backend.agents.chat.citations import cited_indices
from backend.agents.chat.state import (
    MAX_RETRIES,
    QUALITY_GOOD,
    QUALITY_POOR,
    ROUTE_DIRECT_ANSWER,
    ROUTE_RETRIEVE,
    create_initial_state,
)
from backend.core.state import merge_state
from backend.core.token_channel import EVENT_TOKEN, TokenChannel


def _state(query="How do plants make sugar?", source_ids=("src-1",), **overrides):
    state = create_initial_state(
        conversation_id="conv-1",
        source_ids=list(source_ids),
        history=[
            {"role": "user", "content": "Earlier question"},
            {"role": "assistant", "content": "Earlier answer"},
            {"role": "user", "content": query},
        ],
        current_query=query,
    )
    return merge_state(state, overrides)


# --- retrieval ---

async def test_retrieval_returns_ranked_chunk_dicts(fake_retriever):
    patch = await chat_nodes.retrieval_node(_state("Calvin cycle carbon dioxide sugars"))

    chunks = patch["retrieved_chunks"]
    assert chunks[0]["text"].startswith("The Calvin cycle")
    assert {chunk["source_id"] for chunk in chunks} == {"src-1"}
    assert fake_retriever.search_calls[0]["top_k"] == 5


async def test_retrieval_without_sources_skips_the_retriever(fake_retriever):
    patch = await chat_nodes.retrieval_node(_state(source_ids=()))
    assert patch == {"retrieved_chunks": []}
    assert fake_retriever.search_calls == []


async def test_retrieval_failure_degrades_to_empty(fake_retriever):
    fake_retriever.fail = True
    patch = await chat_nodes.retrieval_node(_state())
    assert patch == {"retrieved_chunks": []}


# --- identity ---

async def test_identity_node_appends_canned_reply_and_streams_it():
    channel = TokenChannel()
    state = _state("Which model are you?", token_channel=channel)

    patch = await chat_nodes.identity_node(state)
    channel.close()
    events = await channel.drain()

    assert patch["history"][-1]["content"] == chat_nodes.IDENTITY_RESPONSE
    assert patch["history"][-1]["role"] == "assistant"
    assert patch["response_quality"] == QUALITY_GOOD
    assert [event.data["token"] for event in events] == [chat_nodes.IDENTITY_RESPONSE]


# --- generator ---

def _chunks(count):
    return [
        {"chunk_id": f"src-1:{i}", "source_id": "src-1", "source_name": "notes.txt", "text": f"fact {i}", "index": i}
        for i in range(count)
    ]


async def test_generator_appends_exactly_one_message_with_valid_citations(install_llm):
    install_llm({"rag_answer": ["Plants use light [1] and fix carbon [2], see also [5]."]})
    state = _state(route_decision=ROUTE_RETRIEVE, retrieved_chunks=_chunks(2))

    patch = await chat_nodes.generator_node(state)

    history = patch["history"]
    assert len(history) == len(state["history"]) + 1
    message = history[-1]
    assert message["role"] == "assistant"
    assert all(1 <= k <= 2 for k in cited_indices(message["content"]))
    assert "[5]" not in message["content"]
    assert [source["citation"] for source in message["sources"]] == [1, 2]
    assert patch["model_used"] == "fake-model"
    assert patch["total_tokens"] > 0


async def test_generator_prompt_numbers_chunks_and_uses_last_five_messages(install_llm):
    llm = install_llm()
    history = [{"role": "user" if i % 2 == 0 else "assistant", "content": f"m{i}"} for i in range(8)]
    state = merge_state(
        _state(route_decision=ROUTE_RETRIEVE, retrieved_chunks=_chunks(3)),
        {"history": history + [{"role": "user", "content": "How do plants make sugar?"}]},
    )

    await chat_nodes.generator_node(state)

    prompt = llm.generator_calls[0]["prompt"]
    assert "[1] (from notes.txt)\nfact 0" in prompt
    assert "[3] (from notes.txt)\nfact 2" in prompt
    assert "user: m2" not in prompt
    assert "assistant: m3" in prompt
    assert "assistant: m7" in prompt


async def test_direct_answer_uses_its_own_prompt_and_has_no_citations(install_llm):
    llm = install_llm({"direct_answer": ["Hello there [1]!"]})
    state = _state("Hi", route_decision=ROUTE_DIRECT_ANSWER, retrieved_chunks=_chunks(2))

    patch = await chat_nodes.generator_node(state)

    assert llm.generator_calls[0]["kind"] == "direct_answer"
    assert patch["history"][-1]["content"] == "Hello there !"
    assert patch["history"][-1]["sources"] == []


async def test_streamed_tokens_equal_final_content(install_llm):
    install_llm({"rag_answer": ["Light [1] drives it [9] and sugar [2] forms."]}, stream_piece_size=2)
    channel = TokenChannel()
    state = _state(route_decision=ROUTE_RETRIEVE, retrieved_chunks=_chunks(2), token_channel=channel)

    patch = await chat_nodes.generator_node(state)
    channel.close()
    events = await channel.drain()

    streamed = "".join(event.data["token"] for event in events if event.type == EVENT_TOKEN)
    assert streamed == patch["history"][-1]["content"]
    assert streamed == "Light [1] drives it  and sugar [2] forms."


async def test_generator_failure_appends_apology_and_marks_poor(install_llm):
    install_llm({"rag_answer": [RuntimeError("LLM exploded")]})
    channel = TokenChannel()
    state = _state(route_decision=ROUTE_RETRIEVE, retrieved_chunks=_chunks(1), token_channel=channel)

    patch = await chat_nodes.generator_node(state)
    channel.close()
    events = await channel.drain()

    assert patch["history"][-1]["content"] == chat_nodes.GENERATION_ERROR_RESPONSE
    assert patch["response_quality"] == QUALITY_POOR
    assert patch["generation_error"]
    assert events[-1].data == {"token": chat_nodes.GENERATION_ERROR_RESPONSE, "replace": True}


# --- quality ---

def _answered_state(**overrides):
    state = _state(retrieved_chunks=_chunks(1))
    history = state["history"] + [{"role": "assistant", "content": "Plants use light [1]."}]
    return merge_state(state, dict({"history": history}, **overrides))


async def test_quality_skips_evaluation_on_first_message(install_llm):
    llm = install_llm({"quality": ["poor"]})
    patch = await chat_nodes.quality_node(_answered_state(is_first_message=True))
    assert patch == {"response_quality": QUALITY_GOOD}
    assert llm.calls == []


async def test_quality_poor_drops_last_answer_and_counts_retry(install_llm):
    install_llm({"quality": ["poor"]})
    state = _answered_state()

    patch = await chat_nodes.quality_node(state)

    assert patch["response_quality"] == QUALITY_POOR
    assert patch["retry_count"] == 1
    assert patch["history"] == state["history"][:-1]


async def test_quality_is_forced_good_at_max_retries(install_llm):
    llm = install_llm({"quality": ["poor"]})
    patch = await chat_nodes.quality_node(_answered_state(retry_count=MAX_RETRIES))
    assert patch == {"response_quality": QUALITY_GOOD}
    assert llm.calls_of("quality") == []


async def test_quality_without_assistant_message_is_good(install_llm):
    install_llm({"quality": ["poor"]})
    patch = await chat_nodes.quality_node(_state())
    assert patch["response_quality"] == QUALITY_GOOD


async def test_quality_failure_is_good(install_llm):
    install_llm({"quality": [TimeoutError("slow")]})
    patch = await chat_nodes.quality_node(_answered_state())
    assert patch["response_quality"] == QUALITY_GOOD


async def test_generation_error_counts_as_poor_without_evaluation(install_llm):
    llm = install_llm({"quality": ["good"]})
    patch = await chat_nodes.quality_node(_answered_state(generation_error="boom", retry_count=1))

    assert patch["response_quality"] == QUALITY_POOR
    assert patch["retry_count"] == 2
    assert llm.calls_of("quality") == []
