"""Utilities for loading and accessing the local Large Language Model."""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from docchat.config import Settings, get_settings
from docchat.errors import DocChatError
from docchat.telemetry import emit_exception, emit_llm_provider_init

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a document assistant. Answer using only the provided document excerpts "
    "and conversation history. If the excerpts do not cover the question, say so."
)

UNCONFIGURED_REASON = "No language model is configured (set LLM_MODEL_PATH)."


@dataclass(slots=True)
class LLMStatus:
    """Structured status information about the configured LLM backend."""

    configured: bool
    model_loaded: bool
    model_name: str
    device: str
    error: Optional[str] = None


class LLMError(DocChatError):
    """Base exception raised for LLM provider issues."""


class LLMNotReadyError(LLMError):
    """Raised when the model cannot be loaded or is unavailable."""


class LLMGenerationError(LLMError):
    """Raised when text generation fails unexpectedly."""


class LLM:
    """Common interface exposed by language model implementations."""

    def complete(self, prompt: str) -> str:
        """Return the model's completion for ``prompt``."""

        raise NotImplementedError

    @property
    def is_configured(self) -> bool:
        """``False`` when no real model stands behind this instance."""

        return False

    @property
    def model_loaded(self) -> bool:
        return False

    @property
    def model_name(self) -> str:
        return "stub"

    @property
    def device(self) -> str:
        return "cpu"

    @property
    def last_error(self) -> Optional[str]:
        return None

    def preload(self) -> None:
        return None

    def status(self) -> LLMStatus:
        """Return structured diagnostic information for health checks."""

        return LLMStatus(
            configured=self.is_configured,
            model_loaded=self.model_loaded,
            model_name=self.model_name,
            device=self.device,
            error=self.last_error,
        )


class LLMStub(LLM):
    """Placeholder used when no model is configured; refuses to complete."""

    def __init__(self, *, reason: str | None = None) -> None:
        self._reason = reason or UNCONFIGURED_REASON

    def complete(self, prompt: str) -> str:
        raise LLMNotReadyError(self._reason)

    @property
    def last_error(self) -> Optional[str]:
        return self._reason


@dataclass(slots=True)
class LLMConfig:
    model_path: str
    max_tokens: int = 512
    temperature: float = 0.3
    device: str = "auto"


class TransformersLLM(LLM):
    """Lazy-loading wrapper around ``AutoModelForCausalLM``."""

    def __init__(self, config: LLMConfig) -> None:
        self._config = config
        self._model: Any = None
        self._tokenizer: Any = None
        self._torch: Any = None
        self._lock = threading.RLock()
        self._load_error: Optional[Exception] = None
        self._device_label = "cpu"

    @property
    def is_configured(self) -> bool:
        return True

    @property
    def model_loaded(self) -> bool:
        return self._model is not None

    @property
    def model_name(self) -> str:
        if self._model is not None:
            return getattr(self._model.config, "_name_or_path", self._config.model_path)
        return self._config.model_path

    @property
    def device(self) -> str:
        return self._device_label

    @property
    def last_error(self) -> Optional[str]:
        if self._load_error is None:
            return None
        return str(self._load_error)

    def _ensure_loaded(self) -> None:
        if self._model is not None:
            return
        with self._lock:
            if self._model is not None:
                return

            try:
                import torch
                from transformers import AutoModelForCausalLM, AutoTokenizer
            except ImportError as error:
                self._load_error = error
                raise LLMNotReadyError(
                    "PyTorch/Transformers are not available; install the 'heavy' extra",
                    cause=error,
                ) from error

            want = self._config.device
            use_cuda = want != "cpu" and torch.cuda.is_available()
            device = "cuda" if use_cuda else "cpu"
            load_started = time.perf_counter()
            LOGGER.info("trying to load LLM from %s on %s", self._config.model_path, device)

            try:
                model = AutoModelForCausalLM.from_pretrained(
                    self._config.model_path,
                    device_map="auto" if use_cuda else "cpu",
                    torch_dtype="auto" if use_cuda else torch.float32,
                    low_cpu_mem_usage=True,
                    trust_remote_code=False,
                )
                tokenizer = AutoTokenizer.from_pretrained(self._config.model_path)
            except Exception as error:  # pragma: no cover - depends on hw/config
                emit_exception(module=__name__, error=error)
                self._load_error = error
                raise LLMNotReadyError(
                    f"Failed to load the language model on {device}", cause=error
                ) from error

            if tokenizer.pad_token_id is None and tokenizer.eos_token_id is not None:
                tokenizer.pad_token_id = tokenizer.eos_token_id

            self._torch = torch
            self._model = model
            self._tokenizer = tokenizer
            self._device_label = "cuda:0" if use_cuda else "cpu"
            self._load_error = None
            LOGGER.info(
                "model loaded on %s in %.0f ms",
                self._device_label,
                (time.perf_counter() - load_started) * 1000.0,
            )

    def complete(self, prompt: str) -> str:
        self._ensure_loaded()

        temperature = max(0.0, float(self._config.temperature))
        try:
            inputs = self._tokenizer(
                f"{SYSTEM_PROMPT}\n\n{prompt.strip()}",
                return_tensors="pt",
                truncation=True,
                max_length=getattr(self._tokenizer, "model_max_length", 4096),
            ).to(self._device_label)
            with self._torch.no_grad():
                output_ids = self._model.generate(
                    **inputs,
                    max_new_tokens=self._config.max_tokens if self._config.max_tokens > 0 else 256,
                    temperature=temperature if temperature > 0.0 else None,
                    do_sample=temperature > 0.0,
                    pad_token_id=self._tokenizer.pad_token_id,
                    eos_token_id=self._tokenizer.eos_token_id,
                )
            input_length = inputs["input_ids"].shape[1]
            text = self._tokenizer.decode(output_ids[0, input_length:], skip_special_tokens=True)
        except Exception as error:  # pragma: no cover - depends on runtime behaviour
            LOGGER.exception("LLM generation failed")
            raise LLMGenerationError("LLM generation failed", cause=error) from error

        return text.strip()

    def preload(self) -> None:
        self._ensure_loaded()


_GLOBAL_LLM: Optional[LLM] = None
_GLOBAL_LOCK = threading.Lock()


def _normalise_model_path(raw_path: str) -> str:
    path = Path(os.path.expanduser(raw_path.strip()))
    if not path.exists():
        LOGGER.warning("Configured LLM_MODEL_PATH '%s' does not exist locally.", raw_path)
    return str(path)


def build_llm(settings: Settings) -> LLM:
    """Create the LLM selected by ``settings`` without caching it."""

    if settings.llm_stub:
        LOGGER.warning("LLM_STUB flag enabled; model loading disabled.")
        llm: LLM = LLMStub(reason="LLM_STUB flag enabled; model loading disabled.")
        provider = "stub"
    elif not settings.llm_model_path:
        LOGGER.warning("LLM_MODEL_PATH is not configured; answers will be degraded.")
        llm = LLMStub()
        provider = "stub"
    else:
        llm = TransformersLLM(
            LLMConfig(
                model_path=_normalise_model_path(settings.llm_model_path),
                max_tokens=settings.llm_max_tokens,
                temperature=settings.llm_temperature,
                device=settings.llm_device,
            )
        )
        provider = "transformers"

    emit_llm_provider_init(
        provider=provider,
        ready=llm.is_configured,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
    )
    return llm


def get_llm() -> LLM:
    """Return a lazily initialised LLM instance or a stub."""

    global _GLOBAL_LLM

    with _GLOBAL_LOCK:
        if _GLOBAL_LLM is None:
            _GLOBAL_LLM = build_llm(get_settings())
        return _GLOBAL_LLM


def reset_llm_cache() -> None:
    """Forget the cached LLM instance (primarily for testing)."""

    global _GLOBAL_LLM

    with _GLOBAL_LOCK:
        _GLOBAL_LLM = None


def get_llm_status() -> LLMStatus:
    """Return structured status information about the configured LLM."""

    return get_llm().status()


__all__ = [
    "LLM",
    "LLMConfig",
    "LLMError",
    "LLMGenerationError",
    "LLMNotReadyError",
    "LLMStatus",
    "LLMStub",
    "SYSTEM_PROMPT",
    "TransformersLLM",
    "build_llm",
    "get_llm",
    "get_llm_status",
    "reset_llm_cache",
]
