"""FastAPI web application for grounded knowledge-base chat.

Launch:
    python -m uvicorn webapp.app:app --reload --port 8501

Or via pipeline:
    python pipeline.py serve --port 8501
"""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from errors import (
    ConfigurationError,
    IngestionError,
    IngestionFailure,
    KnowledgeBaseError,
    RetrievalError,
)
from schemas.conversation import ConversationTurn
from schemas.feedback import FeedbackRecord
from settings import Settings, configure_logging
from vectorstore.embedder import Embedder
from vectorstore.ingest import IngestionCoordinator, build_coordinator, build_store
from vectorstore.store import VectorStore
from webapp.feedback import build_feedback_sink
from webapp.rag.query_engine import LLMClient, QueryEngine
from webapp.rag.retriever import Retriever

logger = logging.getLogger(__name__)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


configure_logging(get_settings().log_level)

# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Knowledge Base Assistant",
    description="Grounded answers over a managed knowledge base, streamed with citations",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# ---------------------------------------------------------------------------
# Global state, lazy-initialized on first request
# ---------------------------------------------------------------------------

_store: Optional[VectorStore] = None
_embedder: Optional[Embedder] = None
_engine: Optional[QueryEngine] = None
_coordinator: Optional[IngestionCoordinator] = None
_feedback_sink = None


def get_store(settings: Settings = Depends(get_settings)) -> VectorStore:
    global _store
    if _store is None:
        _store = build_store(settings)
    return _store


def _get_embedder(settings: Settings) -> Embedder:
    global _embedder
    if _embedder is None:
        _embedder = Embedder(model=settings.embedding_model, api_key=settings.require_provider())
    return _embedder


def get_coordinator(settings: Settings = Depends(get_settings)) -> IngestionCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = build_coordinator(
            settings, store=get_store(settings), embedder=_get_embedder(settings)
        )
    return _coordinator


def get_query_engine(settings: Settings = Depends(get_settings)) -> QueryEngine:
    global _engine
    if _engine is None:
        api_key = settings.require_provider()
        try:
            coordinator = get_coordinator(settings)
        except ConfigurationError as e:
            logger.warning("Link ingestion disabled: %s", e.message)
            coordinator = None
        retriever = Retriever(
            get_store(settings),
            _get_embedder(settings),
            top_k=settings.top_k,
            relevance_threshold=settings.relevance_threshold,
        )
        llm = LLMClient(
            model=settings.chat_model,
            api_key=api_key,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )
        _engine = QueryEngine(
            retriever=retriever,
            llm=llm,
            coordinator=coordinator,
            max_history_turns=settings.max_history_turns,
            refusal_sentence=settings.refusal_sentence,
            suppress_suffix_on_partial_refusal=settings.suppress_suffix_on_partial_refusal,
            url_only_residual_chars=settings.url_only_residual_chars,
        )
    return _engine


def get_feedback_sink(settings: Settings = Depends(get_settings)):
    global _feedback_sink
    if _feedback_sink is None:
        _feedback_sink = build_feedback_sink(settings.feedback_path, settings.feedback_webhook_url)
    return _feedback_sink


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------

@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Configuration error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content=exc.to_dict())


@app.exception_handler(RetrievalError)
async def retrieval_error_handler(request: Request, exc: RetrievalError):
    logger.error("Retrieval failed on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content=exc.to_dict())


@app.exception_handler(IngestionError)
async def ingestion_error_handler(request: Request, exc: IngestionError):
    logger.warning("Ingestion failed on %s: %s", request.url.path, exc)
    status = 502 if exc.reason is IngestionFailure.UPSTREAM_FAILURE else 422
    return JSONResponse(status_code=status, content={"success": False, **exc.to_dict()})


@app.exception_handler(KnowledgeBaseError)
async def knowledge_base_error_handler(request: Request, exc: KnowledgeBaseError):
    logger.error("Request failed on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content=exc.to_dict())


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    history: list[ConversationTurn] = Field(default_factory=list)
    top_k: Optional[int] = Field(default=None, alias="topK", ge=1, le=50)


class IndexUrlRequest(BaseModel):
    url: Optional[str] = None


class DocumentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(min_length=1)
    source_file: str = Field(alias="sourceFile", min_length=1)
    category: Optional[str] = None


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": message})


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.post("/api/chat")
def api_chat(req: ChatRequest, engine: QueryEngine = Depends(get_query_engine)):
    """Answer a message from the knowledge base and return the full response."""
    if not req.message or not req.message.strip():
        return _bad_request("Message is required")
    result = engine.answer(req.message, history=req.history, top_k=req.top_k)
    return result.to_dict()


@app.post("/api/chat/stream")
def api_chat_stream(req: ChatRequest, engine: QueryEngine = Depends(get_query_engine)):
    """Answer a message as a Server-Sent Events stream.

    Link ingestion and retrieval happen before the response starts, so a
    retrieval failure is reported as a 502 instead of a truncated stream.
    """
    if not req.message or not req.message.strip():
        return _bad_request("Message is required")
    prepared = engine.prepare(req.message, top_k=req.top_k)
    return StreamingResponse(
        engine.stream_prepared(prepared, history=req.history),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@app.post("/api/index-url")
def api_index_url(req: IndexUrlRequest, coordinator: IngestionCoordinator = Depends(get_coordinator)):
    """Scrape a page and add it to the knowledge base (no-op if already indexed)."""
    if not req.url or not req.url.strip():
        return _bad_request("URL is required")
    result = coordinator.ingest_url(req.url.strip())
    if result.already_indexed:
        message = f"{result.title} is already in the knowledge base"
    else:
        message = f"Successfully indexed {result.chunk_count} chunks from {result.title}"
    return {
        "success": True,
        "url": result.url,
        "title": result.title,
        "chunksIndexed": result.chunk_count,
        "alreadyIndexed": result.already_indexed,
        "message": message,
    }


@app.post("/api/documents")
def api_documents(req: DocumentRequest, coordinator: IngestionCoordinator = Depends(get_coordinator)):
    """Index raw text under a source file name."""
    count = coordinator.ingest_text(req.text, source_file=req.source_file, category=req.category)
    return {"success": True, "sourceFile": req.source_file, "chunksIndexed": count}


@app.post("/api/feedback")
def api_feedback(
    feedback: FeedbackRecord,
    background_tasks: BackgroundTasks,
    sink=Depends(get_feedback_sink),
):
    """Record a rating; the sink runs after the response is sent."""
    background_tasks.add_task(sink.record, feedback)
    return {"success": True, "message": "Feedback recorded"}


@app.get("/api/status")
def api_status(store: VectorStore = Depends(get_store), settings: Settings = Depends(get_settings)):
    """Return vector store statistics and the active retrieval settings."""
    return {
        "vector_store": store.get_stats(),
        "chat_model": settings.chat_model,
        "embedding_model": settings.embedding_model,
        "top_k": settings.top_k,
        "relevance_threshold": settings.relevance_threshold,
        "provider_configured": bool(settings.openai_api_key),
    }
