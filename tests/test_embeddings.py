from __future__ import annotations

import sys

import numpy as np
import pytest

from docchat.config import reset_settings_cache
from docchat.embeddings import EmbeddingModel, HashingEmbeddingModel, get_embedding_model
from docchat.errors import CapabilityUnavailableError


def test_hashing_vectors_are_normalised_and_deterministic() -> None:
    model = HashingEmbeddingModel(dimension=64)

    first, second = model.embed_texts(["Termination notice", "Termination notice"])

    assert len(first) == 64
    assert first == second
    assert np.linalg.norm(first) == pytest.approx(1.0)


def test_shared_tokens_score_higher() -> None:
    model = HashingEmbeddingModel(dimension=256)
    query = np.array(model.embed("termination clause"))
    related = np.array(model.embed("The termination clause survives renewal"))
    unrelated = np.array(model.embed("Invoices are payable monthly"))

    assert float(query @ related) > float(query @ unrelated)


def test_empty_text_embeds_to_zero_vector() -> None:
    vector = HashingEmbeddingModel(dimension=16).embed("")

    assert vector == [0.0] * 16


def test_empty_batch() -> None:
    assert HashingEmbeddingModel().embed_texts([]) == []


def test_sentence_transformers_missing_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "sentence_transformers", None)

    with pytest.raises(CapabilityUnavailableError, match="sentence-transformers"):
        EmbeddingModel()


def test_factory_defaults_to_hashing() -> None:
    assert isinstance(get_embedding_model(), HashingEmbeddingModel)
    assert get_embedding_model() is get_embedding_model()


def test_factory_surfaces_missing_sentence_transformers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EMBEDDING_BACKEND", "sentence-transformers")
    monkeypatch.setitem(sys.modules, "sentence_transformers", None)
    reset_settings_cache()

    with pytest.raises(CapabilityUnavailableError):
        get_embedding_model()
