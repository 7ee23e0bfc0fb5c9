#!/usr/bin/env python3
"""Command-line entry point for the knowledge-base assistant.

Usage:
  python pipeline.py ingest-url https://example.com/services    # Scrape, chunk, index
  python pipeline.py ingest-file notes.md --source-file "Notes" # Index a local text file

  python pipeline.py ask "What services do you offer?"           # Grounded answer
  python pipeline.py ask "What services do you offer?" --stream  # Stream tokens as they arrive

  python pipeline.py vector-status                               # ChromaDB stats
  python pipeline.py vector-query "pricing" --top-k 5            # Raw retrieval check

  python pipeline.py serve --port 8501                           # Launch the HTTP API
"""

import argparse
import logging
import sys
from pathlib import Path

import orjson

from settings import Settings, configure_logging

logger = logging.getLogger(__name__)


def _build_engine(settings: Settings):
    from errors import ConfigurationError
    from vectorstore.embedder import Embedder
    from vectorstore.ingest import build_coordinator, build_store
    from webapp.rag.query_engine import LLMClient, QueryEngine
    from webapp.rag.retriever import Retriever

    api_key = settings.require_provider()
    store = build_store(settings)
    embedder = Embedder(model=settings.embedding_model, api_key=api_key)
    try:
        coordinator = build_coordinator(settings, store=store, embedder=embedder)
    except ConfigurationError as e:
        logger.warning("Link ingestion disabled: %s", e.message)
        coordinator = None

    return QueryEngine(
        retriever=Retriever(
            store, embedder,
            top_k=settings.top_k,
            relevance_threshold=settings.relevance_threshold,
        ),
        llm=LLMClient(
            model=settings.chat_model,
            api_key=api_key,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        ),
        coordinator=coordinator,
        max_history_turns=settings.max_history_turns,
        refusal_sentence=settings.refusal_sentence,
        suppress_suffix_on_partial_refusal=settings.suppress_suffix_on_partial_refusal,
        url_only_residual_chars=settings.url_only_residual_chars,
    )


def iter_stream_text(chunks):
    """Yield text fragments from relayed ``data:`` lines (CLI display only)."""
    buffer = b""
    for chunk in chunks:
        buffer += chunk
        while b"\n" in buffer:
            line, buffer = buffer.split(b"\n", 1)
            line = line.strip()
            if not line.startswith(b"data:"):
                continue
            payload = line[5:].strip()
            if payload == b"[DONE]":
                return
            try:
                record = orjson.loads(payload)
            except orjson.JSONDecodeError:
                continue
            if "meta" in record:
                continue
            choices = record.get("choices") or [{}]
            content = (choices[0].get("delta") or {}).get("content")
            if content:
                yield content


# ---------------------------------------------------------------------------
# INGEST
# ---------------------------------------------------------------------------

def cmd_ingest_url(args, settings: Settings):
    """Index one or more web pages."""
    from vectorstore.ingest import build_coordinator

    coordinator = build_coordinator(settings)
    outcomes = coordinator.ingest_urls(args.urls)

    print("\n" + "=" * 70)
    print("INGESTION SUMMARY")
    print("=" * 70)
    failed = 0
    for outcome in outcomes:
        if outcome.result is None:
            failed += 1
            print(f"  FAILED   {outcome.url}  ({outcome.reason}: {outcome.error})")
        elif outcome.result.already_indexed:
            print(f"  EXISTS   {outcome.url}  {outcome.result.title}")
        else:
            print(f"  INDEXED  {outcome.url}  {outcome.result.title} ({outcome.result.chunk_count} chunks)")
    print("=" * 70)
    if failed:
        sys.exit(1)


def cmd_ingest_file(args, settings: Settings):
    """Index the contents of a local text/markdown file."""
    from vectorstore.ingest import build_coordinator

    path = Path(args.path)
    text = path.read_text(encoding="utf-8")
    coordinator = build_coordinator(settings)
    count = coordinator.ingest_text(text, source_file=args.source_file or path.name, category=args.category)
    print(f"Indexed {count} chunks from {path}")


# ---------------------------------------------------------------------------
# ASK
# ---------------------------------------------------------------------------

def cmd_ask(args, settings: Settings):
    """Answer a question from the knowledge base."""
    engine = _build_engine(settings)

    if args.stream:
        for text in iter_stream_text(engine.stream_answer(args.question, top_k=args.top_k)):
            sys.stdout.write(text)
            sys.stdout.flush()
        print()
        return

    answer = engine.answer(args.question, top_k=args.top_k)
    print("\n" + answer.response)
    if answer.indexed_urls:
        print(f"\nIndexed: {', '.join(answer.indexed_urls)}")


# ---------------------------------------------------------------------------
# VECTOR STORE
# ---------------------------------------------------------------------------

def cmd_vector_status(args, settings: Settings):
    """Show vector store statistics."""
    from vectorstore.ingest import build_store

    stats = build_store(settings).get_stats()

    print("\n" + "=" * 70)
    print("VECTOR STORE STATUS")
    print("=" * 70)
    for name, info in stats.items():
        print(f"\n  Collection: {name}")
        print(f"    Vectors stored: {info.get('count', 0)}")
        keys = info.get("sample_metadata_keys", [])
        if keys:
            print(f"    Metadata fields: {', '.join(keys)}")
    print("\n" + "=" * 70)


def cmd_vector_query(args, settings: Settings):
    """Run a raw similarity query (no threshold) against the vector store."""
    from vectorstore.embedder import Embedder
    from vectorstore.ingest import build_store

    store = build_store(settings)
    embedder = Embedder(model=settings.embedding_model, api_key=settings.require_provider())
    matches = store.query_by_text(args.query, embedder, n_results=args.top_k)

    print(f"\nQuery: \"{args.query}\"")
    print(f"Results: {len(matches)} (threshold {settings.relevance_threshold})")
    print("-" * 50)
    for i, match in enumerate(matches, 1):
        flag = "" if match.score >= settings.relevance_threshold else "  [below threshold]"
        print(f"\n[{i}] Score: {match.score:.4f}{flag}")
        print(f"    Source: {match.source_file}")
        if match.source_url:
            print(f"    URL: {match.source_url}")
        preview = match.content[:200].replace("\n", " ")
        print(f"    Text: {preview}...")


# ---------------------------------------------------------------------------
# SERVE
# ---------------------------------------------------------------------------

def cmd_serve(args, settings: Settings):
    """Launch the HTTP API."""
    import uvicorn

    logger.info("=" * 60)
    logger.info("LAUNCHING KNOWLEDGE BASE API")
    logger.info("  http://localhost:%d", args.port)
    logger.info("=" * 60)

    uvicorn.run(
        "webapp.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )


# ---------------------------------------------------------------------------
# MAIN
# ---------------------------------------------------------------------------

def main():
    parser = argparse.ArgumentParser(
        description="Knowledge Base Assistant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")
    subparsers = parser.add_subparsers(dest="command", help="Command")

    url_parser = subparsers.add_parser("ingest-url", help="Scrape and index web pages")
    url_parser.add_argument("urls", nargs="+", help="Page URLs")

    file_parser = subparsers.add_parser("ingest-file", help="Index a local text file")
    file_parser.add_argument("path", help="Path to a UTF-8 text or markdown file")
    file_parser.add_argument("--source-file", default=None, help="Source label (default: file name)")
    file_parser.add_argument("--category", default=None, help="Optional category metadata")

    ask_parser = subparsers.add_parser("ask", help="Ask a question")
    ask_parser.add_argument("question", help="Question text (links are indexed first)")
    ask_parser.add_argument("--stream", action="store_true", help="Stream the answer")
    ask_parser.add_argument("--top-k", type=int, default=None, help="Retrieval candidates")

    subparsers.add_parser("vector-status", help="Show vector store statistics")

    vq_parser = subparsers.add_parser("vector-query", help="Test query against vector store")
    vq_parser.add_argument("query", help="Query text")
    vq_parser.add_argument("--top-k", type=int, default=5, help="Number of results")

    serve_parser = subparsers.add_parser("serve", help="Launch the HTTP API")
    serve_parser.add_argument("--port", type=int, default=8501, help="Port (default: 8501)")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Host (default: 0.0.0.0)")
    serve_parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    settings = Settings.from_env()
    configure_logging(settings.log_level, Path(args.log_file) if args.log_file else None)

    commands = {
        "ingest-url": cmd_ingest_url,
        "ingest-file": cmd_ingest_file,
        "ask": cmd_ask,
        "vector-status": cmd_vector_status,
        "vector-query": cmd_vector_query,
        "serve": cmd_serve,
    }

    try:
        commands[args.command](args, settings)
    except Exception as e:
        logger.exception("Pipeline error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
