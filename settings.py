"""Runtime configuration loaded from the environment (and a local .env file).

All tunables live here so the CLI, the web app and the tests build their
components from one ``Settings`` object instead of reading ``os.environ``
ad hoc.
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from errors import ConfigurationError

PROJECT_ROOT = Path(__file__).parent
DATA_DIR = PROJECT_ROOT / "data"

load_dotenv(PROJECT_ROOT / ".env")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

REFUSAL_SENTENCE = "I'm sorry, I don't have enough information in my knowledge base to answer this."
FALLBACK_MESSAGE = "I apologize, but I'm having trouble processing your request. Please try again."

DEFAULT_CHAT_MODEL = "gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-large"
DEFAULT_FIRECRAWL_URL = "https://api.firecrawl.dev/v1/scrape"
MAX_CHUNK_BYTES = 40960
RELEVANCE_THRESHOLD = 0.4


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


@dataclass
class Settings:
    openai_api_key: Optional[str] = None
    chat_model: str = DEFAULT_CHAT_MODEL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    temperature: float = 0.2
    max_tokens: int = 500

    # Retrieval and prompting
    top_k: int = 5
    relevance_threshold: float = RELEVANCE_THRESHOLD
    max_history_turns: int = 10
    refusal_sentence: str = REFUSAL_SENTENCE
    suppress_suffix_on_partial_refusal: bool = False

    # Ingestion
    max_chunk_bytes: int = MAX_CHUNK_BYTES
    existence_probe_limit: int = 10
    url_only_residual_chars: int = 10
    scraper_backend: str = "firecrawl"
    firecrawl_api_key: Optional[str] = None
    firecrawl_url: str = DEFAULT_FIRECRAWL_URL

    # Vector index
    chroma_host: Optional[str] = None
    chroma_port: int = 8000
    chroma_path: str = str(DATA_DIR / "chroma")
    collection_name: str = "knowledge-base"

    # Feedback
    feedback_path: str = str(DATA_DIR / "feedback.jsonl")
    feedback_webhook_url: Optional[str] = None

    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            chat_model=os.getenv("CHAT_MODEL", DEFAULT_CHAT_MODEL),
            embedding_model=os.getenv("EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            temperature=_env_float("CHAT_TEMPERATURE", 0.2),
            max_tokens=_env_int("CHAT_MAX_TOKENS", 500),
            top_k=_env_int("TOP_K", 5),
            relevance_threshold=_env_float("RELEVANCE_THRESHOLD", RELEVANCE_THRESHOLD),
            max_history_turns=_env_int("MAX_HISTORY_TURNS", 10),
            refusal_sentence=os.getenv("REFUSAL_SENTENCE", REFUSAL_SENTENCE),
            suppress_suffix_on_partial_refusal=_env_bool("SUPPRESS_SUFFIX_ON_PARTIAL_REFUSAL", False),
            max_chunk_bytes=_env_int("MAX_CHUNK_BYTES", MAX_CHUNK_BYTES),
            existence_probe_limit=_env_int("EXISTENCE_PROBE_LIMIT", 10),
            url_only_residual_chars=_env_int("URL_ONLY_RESIDUAL_CHARS", 10),
            scraper_backend=os.getenv("SCRAPER_BACKEND", "firecrawl").lower(),
            firecrawl_api_key=os.getenv("FIRECRAWL_API_KEY") or None,
            firecrawl_url=os.getenv("FIRECRAWL_URL", DEFAULT_FIRECRAWL_URL),
            chroma_host=os.getenv("CHROMA_HOST") or None,
            chroma_port=_env_int("CHROMA_PORT", 8000),
            chroma_path=os.getenv("CHROMA_PATH", str(DATA_DIR / "chroma")),
            collection_name=os.getenv("CHROMA_COLLECTION", "knowledge-base"),
            feedback_path=os.getenv("FEEDBACK_PATH", str(DATA_DIR / "feedback.jsonl")),
            feedback_webhook_url=os.getenv("FEEDBACK_WEBHOOK_URL") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )

    def require_provider(self) -> str:
        """Return the provider API key or raise before any work is attempted."""
        if not self.openai_api_key:
            raise ConfigurationError(
                "OPENAI_API_KEY is not set; the embedding and completion provider is unavailable",
                setting="OPENAI_API_KEY",
            )
        return self.openai_api_key

    def require_scraper(self) -> None:
        if self.scraper_backend == "firecrawl" and not self.firecrawl_api_key:
            raise ConfigurationError(
                "FIRECRAWL_API_KEY is not set; use SCRAPER_BACKEND=html to scrape locally",
                setting="FIRECRAWL_API_KEY",
            )
        if self.scraper_backend not in {"firecrawl", "html"}:
            raise ConfigurationError(
                f"Unknown scraper backend: {self.scraper_backend}",
                setting="SCRAPER_BACKEND",
            )


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Install the root handler once for CLI and server entry points."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )
