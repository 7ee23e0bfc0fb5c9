"""Exception hierarchy for the knowledge-base assistant.

Every error carries a human-readable message plus a ``details`` dict so the
HTTP layer and the CLI can log and serialize failures the same way.
"""

from enum import Enum
from typing import Any, Optional


class KnowledgeBaseError(Exception):
    """Base class for all application errors."""

    code = "knowledge_base_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ConfigurationError(KnowledgeBaseError):
    """Raised when provider credentials or other required settings are missing."""

    code = "configuration_error"

    def __init__(self, message: str, setting: Optional[str] = None):
        details = {"setting": setting} if setting else None
        super().__init__(message, details)


class RetrievalError(KnowledgeBaseError):
    """Raised when the vector index or the embedding provider cannot be queried.

    Retrieval failures abort the request; they are never reported as an
    empty result set.
    """

    code = "retrieval_error"


class IngestionFailure(str, Enum):
    NO_CONTENT = "no_content"
    NO_CHUNKS = "no_chunks"
    UPSTREAM_FAILURE = "upstream_failure"


class IngestionError(KnowledgeBaseError):
    """Raised when a single URL or document cannot be ingested."""

    code = "ingestion_error"

    def __init__(
        self,
        message: str,
        reason: IngestionFailure,
        url: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        details = details or {}
        details["reason"] = reason.value
        if url:
            details["url"] = url
        self.reason = reason
        self.url = url
        super().__init__(message, details)


class ScrapeError(KnowledgeBaseError):
    """Raised by a scraper when a page cannot be fetched or parsed."""

    code = "scrape_error"

    def __init__(self, message: str, url: str, status_code: Optional[int] = None):
        details: dict[str, Any] = {"url": url}
        if status_code is not None:
            details["status_code"] = status_code
        self.url = url
        self.status_code = status_code
        super().__init__(message, details)


class StreamProtocolError(KnowledgeBaseError):
    """Raised when a complete upstream stream line is not a parseable record."""

    code = "stream_protocol_error"

    def __init__(self, message: str, line: str):
        self.line = line
        super().__init__(message, {"line": line[:200]})
