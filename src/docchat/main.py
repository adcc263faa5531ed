import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, TypeVar

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from docchat.api.chats import router as chats_router
from docchat.api.documents import router as documents_router
from docchat.config import get_settings
from docchat.embeddings import get_embedding_model
from docchat.errors import DocChatError
from docchat.llm_provider import get_llm_status
from docchat.logging_config import configure_logging
from docchat.telemetry import emit_app_startup_event
from docchat.vectorstore import get_vector_index

configure_logging()

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
    emit_app_startup_event()
    yield


app = FastAPI(title="Document Chat API", lifespan=_lifespan)
app.include_router(chats_router)
app.include_router(documents_router)

T = TypeVar("T")


def _resolve_dependency(factory: Callable[[], T]) -> T:
    """Resolve a dependency while respecting FastAPI overrides."""

    override: Any | None = app.dependency_overrides.get(factory)
    resolved: Any = override if override is not None else factory
    return resolved() if callable(resolved) else resolved


@app.get("/", response_class=PlainTextResponse)
def read_root() -> str:
    """Healthcheck endpoint for the service."""
    return "ok"


@app.get("/healthz", response_class=PlainTextResponse)
def healthcheck() -> str:
    """Liveness probe used by container orchestrators."""
    return "ok"


@app.get("/readyz", response_class=PlainTextResponse)
def readiness_probe() -> str:
    """Readiness probe that ensures the embedding and vector backends respond."""

    errors: list[str] = []

    try:
        embedding_model = _resolve_dependency(get_embedding_model)
        embedding_model.embed_texts(["__readyz__"])
    except DocChatError as exc:
        errors.append(f"embedding_model_unavailable: {exc}")

    try:
        index = _resolve_dependency(get_vector_index)
        index.count("readyz-probe")
    except DocChatError as exc:
        errors.append(f"vector_store_unavailable: {exc}")

    if errors:
        raise HTTPException(status_code=503, detail="; ".join(errors))

    return "ok"


@app.get("/healthz/model")
def model_healthcheck() -> dict[str, object]:
    """Expose language model configuration and loading status."""

    status = get_llm_status()
    payload: dict[str, object] = {
        "configured": status.configured,
        "model_loaded": status.model_loaded,
        "device": status.device,
        "name": status.model_name,
        "vector_store": get_settings().vector_store,
    }
    if status.error:
        payload["reason"] = status.error
    return payload
