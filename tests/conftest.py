"""
Test configuration for stable local/CI execution.
"""
from __future__ import annotations

import asyncio
import inspect
import os

import pytest


# Disable external tracing uploads during tests.
os.environ.setdefault("LANGSMITH_TRACING", "false")
os.environ.setdefault("LANGCHAIN_TRACING_V2", "false")
os.environ.setdefault("LANGSMITH_TRACING_V2", "false")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("USE_REDIS_STORE", "false")
os.environ.setdefault("EMBEDDING_PROVIDER", "local")
os.environ.setdefault("VECTOR_DB_DIR", "/tmp/source-study-assistant-test-vectorstore")


def pytest_pyfunc_call(pyfuncitem):
    """
    Minimal asyncio runner to support async test functions without extra plugins.
    """
    testfunction = pyfuncitem.obj
    if not inspect.iscoroutinefunction(testfunction):
        return None

    kwargs = {
        argname: pyfuncitem.funcargs[argname]
        for argname in pyfuncitem._fixtureinfo.argnames
    }
    asyncio.run(testfunction(**kwargs))
    return True


@pytest.fixture
def source_chunks():
    from tests.fakes import make_chunk

    return [
        make_chunk("src-1", 0, "Photosynthesis converts light energy into chemical energy in plants."),
        make_chunk("src-1", 1, "Chlorophyll absorbs mostly blue and red light."),
        make_chunk("src-1", 2, "The Calvin cycle fixes carbon dioxide into sugars."),
        make_chunk("src-2", 0, "Mitochondria produce ATP through cellular respiration.", source_name="cells.md"),
    ]


@pytest.fixture
def fake_retriever(source_chunks, monkeypatch):
    """FakeDocumentRetriever wired into the chat workflow components."""
    from backend.agents.chat import nodes as chat_nodes
    from tests.fakes import FakeDocumentRetriever

    retriever = FakeDocumentRetriever(source_chunks)
    monkeypatch.setattr(chat_nodes.CHAT_COMPONENTS, "retriever", retriever)
    return retriever


@pytest.fixture
def install_llm(monkeypatch):
    """
    Returns a function that builds a FakeLLMGateway from a script and wires
    it into both workflows.
    """
    from backend.agents.chat import nodes as chat_nodes
    from backend.agents.quiz import nodes as quiz_nodes
    from tests.fakes import FakeLLMGateway

    def _install(script=None, **kwargs):
        llm = FakeLLMGateway(script, **kwargs)
        monkeypatch.setattr(chat_nodes.CHAT_COMPONENTS, "llm", llm)
        monkeypatch.setattr(quiz_nodes.QUIZ_AGENT_COMPONENTS, "llm", llm)
        return llm

    return _install
