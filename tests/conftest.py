"""Shared fixtures and capability fakes for the docchat test-suite."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Sequence

import pytest

from docchat.config import Settings, reset_settings_cache
from docchat.conversations import InMemoryConversationStore
from docchat.embeddings import HashingEmbeddingModel, reset_embedding_model_cache
from docchat.errors import VectorStoreUnavailableError
from docchat.llm_provider import LLM, LLMGenerationError, reset_llm_cache
from docchat.services.chat import ChatService, reset_chat_service_cache
from docchat.vectorstore import InMemoryVectorIndex, ScoredChunk, VectorRecord, reset_vector_index_cache

_ENV_KEYS = (
    "DATA_DIR",
    "CHUNK_SIZE",
    "CHUNK_OVERLAP",
    "TOP_K_PER_NAMESPACE",
    "TOP_K_OVERALL",
    "NAMESPACE_TIMEOUT_SECONDS",
    "MERGE_POLICY",
    "MAX_CONTEXT_CHARS",
    "MAX_HISTORY_CHARS",
    "MEMORY_MAX_TURNS",
    "CITATION_PREVIEW_CHARS",
    "MAX_UPLOAD_BYTES",
    "VECTOR_STORE",
    "CHROMA_PERSIST_DIR",
    "EMBEDDING_BACKEND",
    "EMBEDDING_MODEL_PATH",
    "EMBEDDING_DEVICE",
    "LLM_MODEL_PATH",
    "LLM_STUB",
    "LLM_MAX_TOKENS",
    "LLM_TEMPERATURE",
    "LLM_DEVICE",
    "OCR_ENABLED",
    "OCR_LANG",
    "LOG_LEVEL",
    "LOG_DIR",
    "LOG_MAX_FIELD_CHARS",
)


class FakeLLM(LLM):
    """Configured language model returning a canned answer and recording prompts."""

    def __init__(
        self,
        answer: str = "The agreement ends after two years.",
        *,
        error: Exception | None = None,
        fail_first: int | None = None,
    ) -> None:
        self.answer = answer
        self.error = error
        # Number of leading calls that raise ``error``; None means every call.
        self.fail_first = fail_first
        self.prompts: List[str] = []

    @property
    def is_configured(self) -> bool:
        return True

    @property
    def model_loaded(self) -> bool:
        return True

    @property
    def model_name(self) -> str:
        return "fake-llm"

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None and (self.fail_first is None or len(self.prompts) <= self.fail_first):
            raise self.error
        return self.answer


class FlakyIndex(InMemoryVectorIndex):
    """In-memory index whose queries fail for selected namespaces."""

    def __init__(self, failing: Iterable[str] = ()) -> None:
        super().__init__()
        self.failing = set(failing)
        self.queried: List[str] = []
        self.fail_deletes = False
        self.refused_deletes: set[str] = set()

    def query(self, namespace: str, vector: Sequence[float], k: int) -> List[ScoredChunk]:
        self.queried.append(namespace)
        if namespace in self.failing:
            raise VectorStoreUnavailableError(f"backend offline for {namespace}")
        return super().query(namespace, vector, k)

    def delete_namespace(self, namespace: str) -> bool:
        if self.fail_deletes or namespace in self.refused_deletes:
            raise VectorStoreUnavailableError("delete refused")
        return super().delete_namespace(namespace)


def add_namespace(
    index: InMemoryVectorIndex,
    embedder: HashingEmbeddingModel,
    namespace: str,
    texts: Sequence[str],
    *,
    file_name: str | None = None,
    page_count: int = 1,
) -> None:
    """Populate ``namespace`` with one record per text, mimicking ingestion metadata."""

    total = len(texts)
    vectors = embedder.embed_texts(list(texts))
    records = [
        VectorRecord(
            id=f"{namespace}-{index_}",
            vector=vector,
            text=text,
            metadata={
                "file_name": file_name or namespace,
                "page": index_ * page_count // total + 1,
                "chunk_index": index_,
                "total_chunks": total,
            },
        )
        for index_, (text, vector) in enumerate(zip(texts, vectors))
    ]
    index.upsert(namespace, records)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    reset_settings_cache()
    reset_embedding_model_cache()
    reset_vector_index_cache()
    reset_llm_cache()
    reset_chat_service_cache()
    yield
    reset_settings_cache()
    reset_embedding_model_cache()
    reset_vector_index_cache()
    reset_llm_cache()
    reset_chat_service_cache()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(data_dir=tmp_path / "uploads", chunk_size=200, chunk_overlap=40)


@pytest.fixture
def embedder() -> HashingEmbeddingModel:
    return HashingEmbeddingModel(dimension=128)


@pytest.fixture
def index() -> FlakyIndex:
    return FlakyIndex()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def failing_llm() -> FakeLLM:
    return FakeLLM(error=LLMGenerationError("CUDA out of memory"))


@pytest.fixture
def service(settings: Settings, index: FlakyIndex, embedder: HashingEmbeddingModel, fake_llm: FakeLLM) -> ChatService:
    return ChatService(
        settings=settings,
        store=InMemoryConversationStore(),
        index=index,
        embedder=embedder,
        llm=fake_llm,
    )


CONTRACT_TEXT = (
    "Master Services Agreement\n\n"
    "1. Term. This agreement starts on the effective date and lasts for two years. "
    "Either party may renew the agreement in writing.\n\n"
    "2. Termination. Either party may terminate this agreement with ninety days written notice. "
    "The termination clause survives any renewal of the agreement.\n\n"
    "3. Payment. Invoices are payable within thirty days of receipt. Late payments accrue interest "
    "at one percent per month.\n\n"
    "4. Confidentiality. Each party keeps the other party's confidential information secret "
    "for five years after termination.\n"
)
