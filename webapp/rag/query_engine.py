"""RAG Query Engine: link ingestion, retrieval and grounded generation.

Each user message goes through:
  1. URL extraction; every link is ingested (sequentially, failures isolated)
  2. Classification: link-only message, greeting, or question
  3. Retrieval for questions (threshold-filtered, sources de-duplicated)
  4. Grounded generation, either as one JSON answer or as a relayed stream

Retrieval failures propagate as RetrievalError so the caller can fail the
request before any answer bytes are sent. Failures during generation turn
into a fixed apologetic message with no sources.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional

from openai import APIConnectionError, APITimeoutError, InternalServerError, OpenAI, RateLimitError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from processors.url_extractor import URL_ONLY_RESIDUAL_CHARS, extract_urls, is_likely_url_only
from schemas.conversation import ConversationTurn
from schemas.ingestion import IngestionOutcome
from schemas.retrieval import Source
from schemas.stream import DeltaEvent, DoneEvent, MetaEvent
from settings import DEFAULT_CHAT_MODEL, FALLBACK_MESSAGE, REFUSAL_SENTENCE
from webapp.rag.prompts import (
    DEFAULT_MAX_HISTORY_TURNS,
    LINK_ONLY_CONFIRMATION,
    LINK_ONLY_FAILURE,
    GroundedPrompt,
    build_grounded_prompt,
    format_citation_suffix,
    format_ingestion_preamble,
    is_greeting,
)
from webapp.rag.retriever import RetrievalResult, Retriever
from webapp.rag.stream_relay import StreamRelay, is_refusal

logger = logging.getLogger(__name__)

TRANSIENT_OPENAI_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError, InternalServerError)


class MessageKind(str, Enum):
    QUESTION = "question"
    GREETING = "greeting"
    LINK_ONLY = "link_only"


@dataclass
class PreparedQuery:
    """Everything known about a message before the model is called."""
    message: str
    kind: MessageKind
    outcomes: list[IngestionOutcome] = field(default_factory=list)
    retrieval: RetrievalResult = field(default_factory=RetrievalResult)

    @property
    def indexed_urls(self) -> list[str]:
        return [o.url for o in self.outcomes if o.ok]

    @property
    def preamble(self) -> str:
        return format_ingestion_preamble(self.outcomes)

    @property
    def sources(self) -> list[Source]:
        return self.retrieval.sources


@dataclass
class ChatAnswer:
    response: str
    sources: list[Source]
    indexed_urls: list[str]
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "response": self.response,
            "sources": [s.model_dump(exclude_none=True) for s in self.sources],
            "indexedUrls": self.indexed_urls,
        }


class LLMClient:
    """OpenAI chat completions, as a single answer or as the raw SSE byte stream."""

    def __init__(
        self,
        model: str = DEFAULT_CHAT_MODEL,
        api_key: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 500,
        client: Optional[OpenAI] = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = client or OpenAI(api_key=api_key)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(TRANSIENT_OPENAI_ERRORS),
        reraise=True,
    )
    def chat(self, messages: list[dict]) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content or ""

    def stream_raw(self, messages: list[dict]) -> Iterator[bytes]:
        """Yield the provider's raw ``data: {json}`` bytes as they arrive.

        Closing the generator closes the HTTP response.
        """
        with self.client.chat.completions.with_streaming_response.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            stream=True,
        ) as response:
            yield from response.iter_bytes()


class QueryEngine:
    """Orchestrates link ingestion, retrieval and grounded answering."""

    def __init__(
        self,
        retriever: Retriever,
        llm: LLMClient,
        coordinator=None,
        max_history_turns: int = DEFAULT_MAX_HISTORY_TURNS,
        refusal_sentence: str = REFUSAL_SENTENCE,
        suppress_suffix_on_partial_refusal: bool = False,
        url_only_residual_chars: int = URL_ONLY_RESIDUAL_CHARS,
    ):
        self.retriever = retriever
        self.llm = llm
        self.coordinator = coordinator
        self.max_history_turns = max_history_turns
        self.refusal_sentence = refusal_sentence
        self.suppress_suffix_on_partial_refusal = suppress_suffix_on_partial_refusal
        self.url_only_residual_chars = url_only_residual_chars

    # ------------------------------------------------------------------
    # Preparation (ingest links, classify, retrieve)
    # ------------------------------------------------------------------

    def prepare(self, message: str, top_k: Optional[int] = None) -> PreparedQuery:
        """Ingest linked pages and retrieve context for ``message``.

        Raises:
            RetrievalError: the index could not be queried.
        """
        started = time.time()
        urls = extract_urls(message)
        outcomes = self._ingest(urls)

        if urls and is_likely_url_only(message, self.url_only_residual_chars):
            kind = MessageKind.LINK_ONLY
        elif is_greeting(message):
            kind = MessageKind.GREETING
        else:
            kind = MessageKind.QUESTION

        prepared = PreparedQuery(message=message, kind=kind, outcomes=outcomes)
        if kind is MessageKind.QUESTION:
            prepared.retrieval = self.retriever.retrieve(message, top_k=top_k)

        logger.info(
            "Prepared %s message: %d urls (%d indexed), %d context passages in %.0fms",
            kind.value, len(urls), len(prepared.indexed_urls),
            len(prepared.retrieval.documents), (time.time() - started) * 1000,
        )
        return prepared

    def _ingest(self, urls: list[str]) -> list[IngestionOutcome]:
        if not urls:
            return []
        if self.coordinator is None:
            logger.warning("Link ingestion is not configured; ignoring %d url(s)", len(urls))
            return [IngestionOutcome(url=u, error="ingestion not configured") for u in urls]
        return self.coordinator.ingest_urls(urls)

    def build_prompt(
        self,
        prepared: PreparedQuery,
        history: Optional[list[ConversationTurn]] = None,
    ) -> GroundedPrompt:
        return build_grounded_prompt(
            question=prepared.message,
            context=prepared.retrieval.documents,
            sources=prepared.retrieval.sources,
            history=history,
            matches=prepared.retrieval.matches,
            max_history_turns=self.max_history_turns,
            refusal_sentence=self.refusal_sentence,
        )

    def _link_only_reply(self, prepared: PreparedQuery) -> str:
        confirmation = LINK_ONLY_CONFIRMATION if prepared.indexed_urls else LINK_ONLY_FAILURE
        return prepared.preamble + confirmation

    # ------------------------------------------------------------------
    # Non-streaming answer
    # ------------------------------------------------------------------

    def answer(
        self,
        message: str,
        history: Optional[list[ConversationTurn]] = None,
        top_k: Optional[int] = None,
    ) -> ChatAnswer:
        prepared = self.prepare(message, top_k=top_k)
        return self.answer_prepared(prepared, history)

    def answer_prepared(
        self,
        prepared: PreparedQuery,
        history: Optional[list[ConversationTurn]] = None,
    ) -> ChatAnswer:
        t_start = time.time()
        if prepared.kind is MessageKind.LINK_ONLY:
            return ChatAnswer(
                response=self._link_only_reply(prepared),
                sources=[],
                indexed_urls=prepared.indexed_urls,
            )

        prompt = self.build_prompt(prepared, history)
        try:
            text = self.llm.chat(prompt.to_messages())
        except Exception as e:
            logger.exception("Answer generation failed: %s", e)
            return ChatAnswer(response=FALLBACK_MESSAGE, sources=[], indexed_urls=prepared.indexed_urls)

        sources = prepared.sources
        response = prepared.preamble + text
        if text.strip() and not is_refusal(text, self.refusal_sentence, self.suppress_suffix_on_partial_refusal):
            response += format_citation_suffix(sources)
        else:
            sources = []

        return ChatAnswer(
            response=response,
            sources=sources,
            indexed_urls=prepared.indexed_urls,
            metadata={
                "kind": prepared.kind.value,
                "model": self.llm.model,
                "synthesis_ms": int((time.time() - t_start) * 1000),
            },
        )

    # ------------------------------------------------------------------
    # Streaming answer
    # ------------------------------------------------------------------

    def stream_prepared(
        self,
        prepared: PreparedQuery,
        history: Optional[list[ConversationTurn]] = None,
    ) -> Iterator[bytes]:
        """Yield SSE bytes: preamble, model deltas, citation suffix, meta, done."""
        if prepared.kind is MessageKind.LINK_ONLY:
            relay = StreamRelay(
                indexed_urls=prepared.indexed_urls,
                preamble=self._link_only_reply(prepared),
                refusal_sentence=self.refusal_sentence,
            )
            yield from relay.relay(iter(()))
            return

        relay = StreamRelay(
            sources=prepared.sources,
            indexed_urls=prepared.indexed_urls,
            preamble=prepared.preamble,
            refusal_sentence=self.refusal_sentence,
            suppress_suffix_on_partial_refusal=self.suppress_suffix_on_partial_refusal,
        )
        prompt = self.build_prompt(prepared, history)
        try:
            yield from relay.relay(self.llm.stream_raw(prompt.to_messages()))
        except Exception as e:
            logger.exception("Streaming answer failed after %d chars: %s", len(relay.answer_text), e)
            yield DeltaEvent(content=FALLBACK_MESSAGE).encode()
            yield MetaEvent(sources=[], indexed_urls=prepared.indexed_urls).encode()
            yield DoneEvent().encode()

    def stream_answer(
        self,
        message: str,
        history: Optional[list[ConversationTurn]] = None,
        top_k: Optional[int] = None,
    ) -> Iterator[bytes]:
        prepared = self.prepare(message, top_k=top_k)
        yield from self.stream_prepared(prepared, history)
