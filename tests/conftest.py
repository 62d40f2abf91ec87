import logging

import pytest

from fakes import FakeDocClient, FakeEmbedClient, FakeLLMClient, FakeRAGClient
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger

DIMENSION = 4


@pytest.fixture(autouse=True)
def fast_env(monkeypatch):
    """No delays between batches and a small embedding dimension."""
    monkeypatch.setenv("EMBED_DIMENSION", str(DIMENSION))
    monkeypatch.setenv("INGEST_BATCH_DELAY_MS", "0")
    monkeypatch.setenv("INGEST_RATE_LIMIT_BACKOFF_MS", "0")
    monkeypatch.setenv("REPAIR_BATCH_DELAY_MS", "0")
    monkeypatch.setenv("QUERY_RATE_LIMIT_BACKOFF_MS", "0")
    monkeypatch.delenv("CSV_DELIMITER", raising=False)
    monkeypatch.delenv("LLM_SYSTEM_PROMPT", raising=False)


@pytest.fixture
def logger():
    return ColorLogger(logging.getLogger("csv_rag_sync.test"))


@pytest.fixture
def helper_config(logger):
    return HelperConfig(logger=logger)


@pytest.fixture
def doc_client():
    return FakeDocClient()


@pytest.fixture
def rag_client():
    return FakeRAGClient(dimension=DIMENSION)


@pytest.fixture
def embed_client():
    return FakeEmbedClient(dimension=DIMENSION)


@pytest.fixture
def llm_client():
    return FakeLLMClient(chat_model="primary", fallback_chat_model="fallback")

