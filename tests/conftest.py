"""Shared fixtures for the test suite."""

import logging

import pytest

from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger
from shared.models.config import RetrievalConfig
from shared.models.errors import GenerationFailed
from tests.fakes import FakeEmbedClient, FakeLLMClient, FakeRAGClient


@pytest.fixture
def helper_config():
    return HelperConfig(logger=ColorLogger(logging.getLogger("tests")), environ={})


@pytest.fixture
def retrieval_config():
    return RetrievalConfig()


@pytest.fixture
def rag_client():
    return FakeRAGClient()


@pytest.fixture
def embed_client():
    return FakeEmbedClient()


@pytest.fixture
def llm_client():
    return FakeLLMClient(reply="related, terms")


@pytest.fixture
def failing_llm_client():
    return FakeLLMClient(error=GenerationFailed("model offline"))
