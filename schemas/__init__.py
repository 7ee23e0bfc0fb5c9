from schemas.chunk import Chunk
from schemas.conversation import ConversationTurn
from schemas.feedback import FeedbackRecord
from schemas.ingestion import (
    WEB_PAGE_CATEGORY,
    IndexRecord,
    IngestionOutcome,
    IngestionResult,
    ScrapedPage,
)
from schemas.retrieval import DEFAULT_SOURCE_FILE, RetrievedMatch, Source
from schemas.stream import (
    DONE_SENTINEL,
    DeltaEvent,
    DoneEvent,
    MetaEvent,
)
