"""Runtime configuration loaded from environment variables."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

LOGGER = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
MERGE_POLICIES = frozenset({"concatenate", "score"})


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_optional(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default


def _float_from_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; using default %s", name, value, default)
        return default


@dataclass(frozen=True, slots=True)
class Settings:
    """Immutable snapshot of the service configuration."""

    data_dir: Path = Path("data/uploads")
    chunk_size: int = 1000
    chunk_overlap: int = 200
    top_k_per_namespace: int = 5
    top_k_overall: int = 10
    namespace_timeout_seconds: float = 10.0
    merge_policy: str = "concatenate"
    max_context_chars: int = 12000
    max_history_chars: int = 4000
    memory_max_turns: int = 20
    citation_preview_chars: int = 200
    max_upload_bytes: int = 10 * 1024 * 1024
    vector_store: str = "memory"
    chroma_persist_dir: Path = Path("chroma_db")
    embedding_backend: str = "hash"
    embedding_model_path: str = DEFAULT_EMBEDDING_MODEL
    embedding_device: str | None = None
    llm_model_path: str | None = None
    llm_stub: bool = False
    llm_max_tokens: int = 512
    llm_temperature: float = 0.3
    llm_device: str = "auto"
    ocr_enabled: bool = False
    ocr_language: str = "eng"
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    log_max_field_chars: int = 2000

    @classmethod
    def from_env(cls) -> "Settings":
        merge_policy = _env_str("MERGE_POLICY", "concatenate").lower()
        if merge_policy not in MERGE_POLICIES:
            LOGGER.warning("Unknown MERGE_POLICY %r; using 'concatenate'", merge_policy)
            merge_policy = "concatenate"

        return cls(
            data_dir=Path(_env_str("DATA_DIR", "data/uploads")),
            chunk_size=_int_from_env("CHUNK_SIZE", 1000),
            chunk_overlap=_int_from_env("CHUNK_OVERLAP", 200),
            top_k_per_namespace=_int_from_env("TOP_K_PER_NAMESPACE", 5),
            top_k_overall=_int_from_env("TOP_K_OVERALL", 10),
            namespace_timeout_seconds=_float_from_env("NAMESPACE_TIMEOUT_SECONDS", 10.0),
            merge_policy=merge_policy,
            max_context_chars=_int_from_env("MAX_CONTEXT_CHARS", 12000),
            max_history_chars=_int_from_env("MAX_HISTORY_CHARS", 4000),
            memory_max_turns=_int_from_env("MEMORY_MAX_TURNS", 20),
            citation_preview_chars=_int_from_env("CITATION_PREVIEW_CHARS", 200),
            max_upload_bytes=_int_from_env("MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
            vector_store=_env_str("VECTOR_STORE", "memory").lower(),
            chroma_persist_dir=Path(_env_str("CHROMA_PERSIST_DIR", "chroma_db")),
            embedding_backend=_env_str("EMBEDDING_BACKEND", "hash").lower(),
            embedding_model_path=_env_str("EMBEDDING_MODEL_PATH", DEFAULT_EMBEDDING_MODEL),
            embedding_device=_env_optional("EMBEDDING_DEVICE"),
            llm_model_path=_env_optional("LLM_MODEL_PATH"),
            llm_stub=_env_flag("LLM_STUB"),
            llm_max_tokens=_int_from_env("LLM_MAX_TOKENS", 512),
            llm_temperature=_float_from_env("LLM_TEMPERATURE", 0.3),
            llm_device=_env_str("LLM_DEVICE", "auto").lower(),
            ocr_enabled=_env_flag("OCR_ENABLED"),
            ocr_language=_env_str("OCR_LANG", "eng"),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
            log_dir=Path(_env_str("LOG_DIR", "logs")),
            log_max_field_chars=_int_from_env("LOG_MAX_FIELD_CHARS", 2000),
        )


@lru_cache()
def get_settings() -> Settings:
    """Return the cached settings instance."""

    return Settings.from_env()


def reset_settings_cache() -> None:
    """Clear the cached settings (primarily for testing)."""

    get_settings.cache_clear()  # type: ignore[attr-defined]


__all__ = ["Settings", "get_settings", "reset_settings_cache"]
