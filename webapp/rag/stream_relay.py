"""Relay a live completion stream while injecting synthetic events.

The upstream is the raw byte stream of an OpenAI-style streaming completion:
``data: {json}`` lines separated by blank lines and terminated by
``data: [DONE]``. The relay forwards those bytes to the caller unchanged,
except that it:

- emits a preamble delta (ingestion status) before any upstream byte
- drops upstream ``meta`` records after capturing their sources/indexedUrls
- appends a citation suffix delta once the answer is complete, unless the
  answer is the refusal sentence
- emits exactly one meta event and exactly one ``[DONE]`` at the very end

Bytes are decoded incrementally, so multi-byte characters and records may
be split anywhere across upstream chunks without changing the output.
A complete ``data:`` line that is not valid JSON is held back and joined
with the following continuation line(s); an SSE field line (``id:``,
``event:``, ...) is never joined. If the record never becomes valid it is
forwarded raw.
"""

import codecs
import logging
import re
from enum import Enum
from typing import Iterable, Iterator, Optional

import orjson
from pydantic import ValidationError

from errors import StreamProtocolError
from schemas.retrieval import Source
from schemas.stream import DONE_SENTINEL, DeltaEvent, DoneEvent, MetaEvent
from settings import REFUSAL_SENTENCE
from webapp.rag.prompts import format_citation_suffix

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
# data:, event:, id:, retry: and any other SSE field start a new line of their own
SSE_FIELD_LINE = re.compile(r"^[A-Za-z-]+:")
MAX_PENDING_CHARS = 256 * 1024


class RelayState(str, Enum):
    OPEN = "open"
    DRAINING = "draining"
    CLOSED = "closed"


class StreamRelay:
    """Single-use relay for one upstream completion stream."""

    def __init__(
        self,
        sources: Optional[list[Source]] = None,
        indexed_urls: Optional[list[str]] = None,
        preamble: str = "",
        refusal_sentence: str = REFUSAL_SENTENCE,
        suppress_suffix_on_partial_refusal: bool = False,
    ):
        self.sources: list[Source] = list(sources or [])
        self.indexed_urls: list[str] = list(indexed_urls or [])
        self.preamble = preamble
        self.refusal_sentence = refusal_sentence
        self.suppress_suffix_on_partial_refusal = suppress_suffix_on_partial_refusal

        self.state = RelayState.OPEN
        self.suffix_text = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._pending: Optional[str] = None
        self._answer_parts: list[str] = []
        self._done = False
        self._lines_seen = 0

    @property
    def answer_text(self) -> str:
        """Model output accumulated so far (excludes synthetic deltas)."""
        return "".join(self._answer_parts)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def relay(self, upstream: Iterable[bytes]) -> Iterator[bytes]:
        if self.state is not RelayState.OPEN:
            raise RuntimeError("StreamRelay instances are single-use")

        iterator = iter(upstream)
        try:
            if self.preamble:
                yield DeltaEvent(content=self.preamble).encode()

            for chunk in iterator:
                if not chunk:
                    continue
                self._buffer += self._decoder.decode(chunk)
                yield from self._drain(final=False)
                if self._done:
                    break

            self.state = RelayState.DRAINING
            if not self._done:
                self._buffer += self._decoder.decode(b"", final=True)
                yield from self._drain(final=True)
            yield from self._flush_pending()
            yield from self._finish()
        finally:
            self.state = RelayState.CLOSED
            self._close_upstream(iterator, upstream)

    def _drain(self, final: bool) -> Iterator[bytes]:
        """Process every complete line in the buffer (and the tail when final)."""
        while not self._done:
            newline = self._buffer.find("\n")
            if newline == -1:
                if not (final and self._buffer):
                    return
                raw_line, self._buffer = self._buffer + "\n", ""
            else:
                raw_line = self._buffer[:newline + 1]
                self._buffer = self._buffer[newline + 1:]
            self._lines_seen += 1
            yield from self._handle_line(raw_line)

    def _handle_line(self, raw_line: str) -> Iterator[bytes]:
        line = raw_line.rstrip("\n").rstrip("\r")

        if self._pending is not None:
            if line and not line.startswith(":") and not SSE_FIELD_LINE.match(line):
                yield from self._continue_pending(line)
                return
            yield from self._flush_pending()

        try:
            out = self._process_line(line, raw_line)
        except StreamProtocolError as e:
            logger.debug("Holding unparseable record for continuation: %s", e.message)
            self._pending = line
            return
        if out is not None:
            yield out

    def _continue_pending(self, continuation: str) -> Iterator[bytes]:
        combined = self._pending + continuation
        try:
            out = self._process_line(combined, combined + "\n")
        except StreamProtocolError:
            if len(combined) > MAX_PENDING_CHARS:
                self._pending = combined
                yield from self._flush_pending()
            else:
                self._pending = combined
            return
        self._pending = None
        if out is not None:
            yield out

    def _flush_pending(self) -> Iterator[bytes]:
        if self._pending is None:
            return
        logger.warning("Forwarding unparseable upstream record raw (%d chars)", len(self._pending))
        pending, self._pending = self._pending, None
        yield (pending + "\n").encode("utf-8")

    # ------------------------------------------------------------------
    # Record handling
    # ------------------------------------------------------------------

    def _process_line(self, line: str, raw_line: str) -> Optional[bytes]:
        """Return the bytes to forward for one line, or None to drop it.

        Raises:
            StreamProtocolError: a ``data:`` payload is not valid JSON.
        """
        forward = raw_line.encode("utf-8")
        if not line or line.startswith(":") or not line.startswith(DATA_PREFIX):
            return forward

        payload = line[len(DATA_PREFIX):].strip()
        if not payload:
            return forward
        if payload == DONE_SENTINEL:
            self._done = True
            return None

        try:
            record = orjson.loads(payload)
        except orjson.JSONDecodeError as e:
            raise StreamProtocolError(f"Invalid JSON in stream record: {e}", line) from e

        if isinstance(record, dict) and "meta" in record:
            self._capture_meta(record["meta"])
            return None

        content = _delta_content(record)
        if content:
            self._answer_parts.append(content)
        return forward

    def _capture_meta(self, meta) -> None:
        if not isinstance(meta, dict):
            return
        sources = meta.get("sources")
        if isinstance(sources, list):
            try:
                self.sources = [Source.model_validate(s) for s in sources if isinstance(s, dict) and s.get("file")]
            except ValidationError as e:
                logger.warning(
                    "Ignoring malformed upstream sources (%d errors); keeping %d sources",
                    e.error_count(), len(self.sources),
                )
        for url in meta.get("indexedUrls") or []:
            if isinstance(url, str) and url not in self.indexed_urls:
                self.indexed_urls.append(url)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def is_refusal(self, answer: str) -> bool:
        return is_refusal(answer, self.refusal_sentence, self.suppress_suffix_on_partial_refusal)

    def _finish(self) -> Iterator[bytes]:
        answer = self.answer_text
        if answer.strip() and not self.is_refusal(answer):
            self.suffix_text = format_citation_suffix(self.sources)
            if self.suffix_text:
                yield DeltaEvent(content=self.suffix_text).encode()

        yield MetaEvent(sources=self.sources, indexed_urls=self.indexed_urls).encode()
        yield DoneEvent().encode()
        logger.info(
            "Relay finished: %d upstream lines, %d answer chars, %d sources, suffix=%s",
            self._lines_seen, len(answer), len(self.sources), bool(self.suffix_text),
        )

    @staticmethod
    def _close_upstream(*candidates) -> None:
        closed: set[int] = set()
        for candidate in candidates:
            close = getattr(candidate, "close", None)
            if close is None or id(candidate) in closed:
                continue
            closed.add(id(candidate))
            close()


def is_refusal(answer: str, refusal_sentence: str = REFUSAL_SENTENCE, partial: bool = False) -> bool:
    """True when ``answer`` is the refusal sentence (or contains it, when ``partial``)."""
    normalized = answer.strip().strip('"').strip()
    if normalized == refusal_sentence:
        return True
    if partial:
        return refusal_sentence.lower() in normalized.lower()
    return False


def _delta_content(record) -> Optional[str]:
    if not isinstance(record, dict):
        return None
    choices = record.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None
