from __future__ import annotations

from datetime import datetime, timezone

import pytest

from docchat.conversations import Message
from docchat.embeddings import UnavailableEmbedder
from docchat.errors import ValidationError
from docchat.llm_provider import LLMStub
from docchat.memory import ConversationMemory, MemoryTurn
from docchat.retrieval import MultiNamespaceRetriever
from docchat.synthesizer import AnswerDegraded, AnswerOk, AnswerSynthesizer, make_citation
from docchat.vectorstore import ScoredChunk

from conftest import FakeLLM, add_namespace

LEASE_TEXTS = [
    "Either party may terminate the lease with ninety days written notice to the other party.",
    "Rent is payable monthly in advance.",
]


@pytest.fixture
def populated(index, embedder):
    add_namespace(index, embedder, "lease-1", LEASE_TEXTS, file_name="lease.pdf", page_count=2)
    add_namespace(index, embedder, "nda-2", ["Confidential information must not be disclosed."], file_name="nda.pdf")
    return index


def _synthesizer(index, embedder, llm, memory=None, **kwargs) -> AnswerSynthesizer:
    return AnswerSynthesizer(
        retriever=MultiNamespaceRetriever(index, embedder),
        llm=llm,
        memory=memory or ConversationMemory(),
        **kwargs,
    )


@pytest.mark.anyio
async def test_answer_with_citations(populated, embedder, fake_llm) -> None:
    memory = ConversationMemory()
    synthesizer = _synthesizer(populated, embedder, fake_llm, memory, citation_preview_chars=30)

    outcome = await synthesizer.answer("c1", "How do I terminate the lease?", ["lease-1", "nda-2"])

    assert isinstance(outcome, AnswerOk)
    assert outcome.degraded is False
    assert outcome.answer == fake_llm.answer
    assert outcome.failures == []
    assert {citation.document for citation in outcome.citations} == {"lease.pdf", "nda.pdf"}
    top = outcome.citations[0]
    assert top.document == "lease.pdf"
    assert top.page == 1
    assert top.preview == LEASE_TEXTS[0][:30] + "..."
    assert "Source: lease.pdf (page 1)" in fake_llm.prompts[0]
    assert memory.summarize("c1") == [MemoryTurn("How do I terminate the lease?", fake_llm.answer)]


@pytest.mark.anyio
async def test_unconfigured_model_degrades_without_retrieval(populated, embedder) -> None:
    memory = ConversationMemory()
    synthesizer = _synthesizer(populated, embedder, LLMStub(), memory)

    outcome = await synthesizer.answer("c1", "What is the rent?", ["lease-1"])

    assert isinstance(outcome, AnswerDegraded)
    assert outcome.degraded is True
    assert outcome.citations == []
    assert "not available" in outcome.answer
    assert "LLM_MODEL_PATH" in outcome.reason
    assert populated.queried == []
    assert memory.summarize("c1") == []


@pytest.mark.anyio
async def test_model_failure_degrades(populated, embedder, failing_llm) -> None:
    memory = ConversationMemory()
    synthesizer = _synthesizer(populated, embedder, failing_llm, memory)

    outcome = await synthesizer.answer("c1", "What is the rent?", ["lease-1"])

    assert isinstance(outcome, AnswerDegraded)
    assert outcome.reason == "CUDA out of memory"
    assert "failed" in outcome.answer
    assert outcome.citations == []
    assert memory.summarize("c1") == []


@pytest.mark.anyio
async def test_unusable_embedder_degrades_instead_of_answering_blind(populated, fake_llm) -> None:
    memory = ConversationMemory()
    synthesizer = _synthesizer(populated, UnavailableEmbedder("sentence-transformers is not installed"), fake_llm, memory)

    outcome = await synthesizer.answer("c1", "What is the rent?", ["lease-1", "nda-2"])

    assert isinstance(outcome, AnswerDegraded)
    assert outcome.reason == "sentence-transformers is not installed"
    assert "Document search is not available" in outcome.answer
    assert [failure.namespace for failure in outcome.failures] == ["lease-1", "nda-2"]
    assert fake_llm.prompts == []
    assert memory.summarize("c1") == []


@pytest.mark.anyio
async def test_empty_model_output_degrades(populated, embedder) -> None:
    synthesizer = _synthesizer(populated, embedder, FakeLLM(answer="   "))

    outcome = await synthesizer.answer("c1", "What is the rent?", ["lease-1"])

    assert isinstance(outcome, AnswerDegraded)
    assert outcome.reason == "model returned an empty answer"


@pytest.mark.anyio
@pytest.mark.parametrize("question", ["", "   \n"])
async def test_empty_question_is_rejected(populated, embedder, fake_llm, question) -> None:
    synthesizer = _synthesizer(populated, embedder, fake_llm)

    with pytest.raises(ValidationError):
        await synthesizer.answer("c1", question, ["lease-1"])
    assert fake_llm.prompts == []


@pytest.mark.anyio
async def test_no_documents_answers_from_history(populated, embedder, fake_llm) -> None:
    memory = ConversationMemory()
    memory.append("c1", "My name is Ada.", "Nice to meet you, Ada.")
    synthesizer = _synthesizer(populated, embedder, fake_llm, memory)

    outcome = await synthesizer.answer("c1", "What is my name?", [])

    assert isinstance(outcome, AnswerOk)
    assert outcome.citations == []
    assert populated.queried == []
    prompt = fake_llm.prompts[0]
    assert "No document excerpts are available" in prompt
    assert "user: My name is Ada." in prompt


@pytest.mark.anyio
async def test_prior_messages_take_precedence_over_memory(populated, embedder, fake_llm) -> None:
    memory = ConversationMemory()
    memory.append("c1", "from memory", "memory answer")
    synthesizer = _synthesizer(populated, embedder, fake_llm, memory)
    now = datetime.now(timezone.utc)
    prior = [
        Message(id="m1", conversation_id="c1", role="user", content="persisted question", created_at=now),
        Message(id="m2", conversation_id="c1", role="assistant", content="persisted answer", created_at=now),
    ]

    await synthesizer.answer("c1", "Follow up?", ["lease-1"], prior_messages=prior)

    prompt = fake_llm.prompts[0]
    assert "user: persisted question\nassistant: persisted answer" in prompt
    assert "from memory" not in prompt


@pytest.mark.anyio
async def test_partial_namespace_failure_still_answers(populated, embedder, fake_llm) -> None:
    populated.failing.add("nda-2")
    synthesizer = _synthesizer(populated, embedder, fake_llm)

    outcome = await synthesizer.answer("c1", "How do I terminate the lease?", ["lease-1", "nda-2"])

    assert isinstance(outcome, AnswerOk)
    assert [failure.namespace for failure in outcome.failures] == ["nda-2"]
    assert {citation.document for citation in outcome.citations} == {"lease.pdf"}


@pytest.mark.anyio
async def test_small_context_budget_is_reported(populated, embedder, fake_llm) -> None:
    synthesizer = _synthesizer(populated, embedder, fake_llm, max_context_chars=80)

    outcome = await synthesizer.answer("c1", "terminate", ["lease-1"])

    assert isinstance(outcome, AnswerOk)
    assert outcome.context_truncated is True


def test_make_citation_falls_back_to_namespace() -> None:
    chunk = ScoredChunk(text="  short text  ", metadata={}, score=0.123456789, namespace="doc-1")

    citation = make_citation(chunk, preview_chars=200)

    assert citation.document == "doc-1"
    assert citation.page is None
    assert citation.preview == "short text"
    assert citation.score == pytest.approx(0.123457)
