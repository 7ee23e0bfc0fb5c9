"""System and instruction prompts for grounded knowledge-base answers.

The assistant may only answer from retrieved context, must use a fixed
refusal sentence when the context does not support an answer, and cites
sources with numeric bracket references that resolve against the source
list sent alongside the answer.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from schemas.conversation import ConversationTurn
from schemas.ingestion import IngestionOutcome
from schemas.retrieval import RetrievedMatch, Source
from settings import REFUSAL_SENTENCE

DEFAULT_MAX_HISTORY_TURNS = 10

GREETING_PHRASES = (
    "hello", "hi", "hey", "good morning", "good afternoon", "good evening",
    "thanks", "thank you", "thanks a lot", "appreciate it",
)

# Words that may follow a greeting without turning it into a question
GREETING_TRAILING_WORDS = frozenset({
    "there", "all", "everyone", "team", "folks", "friend", "bot", "assistant",
    "so", "much", "again", "very", "you", "a", "lot",
})

# ---------------------------------------------------------------------------
# Grounded answer instructions
# ---------------------------------------------------------------------------

GROUNDED_SYSTEM = """\
You are a retrieval-augmented assistant for a private knowledge base. You must \
only answer questions using the context passages provided with each question.

Greetings and courtesy phrases ({greetings}) are exempt: respond naturally and \
politely without needing any context.

For every informational or factual question:
1. Rely strictly on the provided context. Never use outside knowledge, never \
guess, and never fill in missing details yourself.
2. If the context is empty or does not support an answer, reply with exactly \
this sentence and nothing else:
   "{refusal}"
3. Cite the sources you actually used with numeric bracket references such as \
[1] or [2], matching the numbered source list. Only cite sources that appear \
in that list. Do not cite sources you did not use.
4. Always answer in the same language the user wrote in.
5. If the message is neither a question nor a greeting, ask a short clarifying \
question.
"""

GROUNDED_USER = """\
Context:
{context}

Sources:
{sources}

Question: {question}"""

NO_CONTEXT = "(no relevant context was found in the knowledge base)"
NO_SOURCES = "(none)"

CITATION_SUFFIX_HEADER = "\n\n**Sources:**"

LINK_ONLY_CONFIRMATION = "The link has been processed. Ask me anything about its content."
LINK_ONLY_FAILURE = "I couldn't add that link to the knowledge base. Please check the URL and try again."


@dataclass
class GroundedPrompt:
    system_instructions: str
    user_payload: str
    history_messages: list[dict] = field(default_factory=list)

    def to_messages(self) -> list[dict]:
        """Provider message list: system, trailing history, then the grounded question."""
        return [
            {"role": "system", "content": self.system_instructions},
            *self.history_messages,
            {"role": "user", "content": self.user_payload},
        ]


def _format_context(
    documents: list[str],
    sources: list[Source],
    matches: Optional[list[RetrievedMatch]],
) -> str:
    if not documents:
        return NO_CONTEXT

    index_by_file = {s.file: i for i, s in enumerate(sources, 1)}
    passages = []
    for i, doc in enumerate(documents):
        label = f"Passage {i + 1}"
        if matches and i < len(matches):
            n = index_by_file.get(matches[i].source_file)
            if n is not None:
                label = f"[{n}] {matches[i].source_file}"
        passages.append(f"{label}:\n{doc}")
    return "\n\n---\n\n".join(passages)


def _format_sources(sources: list[Source]) -> str:
    if not sources:
        return NO_SOURCES
    lines = []
    for i, source in enumerate(sources, 1):
        line = f"[{i}] {source.file}"
        if source.url:
            line += f" <{source.url}>"
        lines.append(line)
    return "\n".join(lines)


def build_grounded_prompt(
    question: str,
    context: list[str],
    sources: list[Source],
    history: Optional[list[ConversationTurn]] = None,
    matches: Optional[list[RetrievedMatch]] = None,
    max_history_turns: int = DEFAULT_MAX_HISTORY_TURNS,
    refusal_sentence: str = REFUSAL_SENTENCE,
) -> GroundedPrompt:
    """Assemble instructions, a trailing history window and the grounded question.

    Only the last ``max_history_turns`` turns of ``history`` are kept.
    """
    system = GROUNDED_SYSTEM.format(
        greetings=", ".join(f'"{g}"' for g in GREETING_PHRASES),
        refusal=refusal_sentence,
    )
    user = GROUNDED_USER.format(
        context=_format_context(context, sources, matches),
        sources=_format_sources(sources),
        question=question.strip(),
    )
    window = (history or [])[-max_history_turns:] if max_history_turns > 0 else []
    return GroundedPrompt(
        system_instructions=system,
        user_payload=user,
        history_messages=[turn.to_message() for turn in window],
    )


# ---------------------------------------------------------------------------
# Stream decorations
# ---------------------------------------------------------------------------

def format_citation_suffix(sources: list[Source]) -> str:
    """Markdown list of sources appended after a grounded answer."""
    if not sources:
        return ""
    lines = [CITATION_SUFFIX_HEADER]
    for i, source in enumerate(sources, 1):
        line = f"[{i}] {source.file}"
        if source.url:
            line += f" ({source.url})"
        lines.append(line)
    return "\n".join(lines)


def format_ingestion_preamble(outcomes: list[IngestionOutcome]) -> str:
    """One status line per URL, shown before the answer."""
    lines = []
    for outcome in outcomes:
        result = outcome.result
        if result is None:
            lines.append(f"Could not index {outcome.url}")
        elif result.already_indexed:
            lines.append(f"Already in knowledge base: {result.title}")
        else:
            lines.append(f"Added to knowledge base: {result.title} ({result.chunk_count} chunks)")
    return "\n".join(lines) + "\n\n" if lines else ""


def is_greeting(message: str) -> bool:
    """True for short courtesy messages such as "hi" or "thanks a lot!".

    A greeting may be followed by up to two courtesy or address words
    ("hey there", "thanks so much"); anything else, or any question mark,
    makes it a real question.
    """
    if "?" in message:
        return False
    normalized = re.sub(r"[^\w\s']", " ", message.lower())
    normalized = " ".join(normalized.split())
    if not normalized:
        return False
    for phrase in GREETING_PHRASES:
        if normalized == phrase:
            return True
        if not normalized.startswith(phrase + " "):
            continue
        trailing = normalized[len(phrase):].split()
        if len(trailing) <= 2 and all(word in GREETING_TRAILING_WORDS for word in trailing):
            return True
    return False
