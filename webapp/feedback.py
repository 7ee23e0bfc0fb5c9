"""Feedback sinks for thumbs-up / thumbs-down ratings on assistant answers.

Recording is fire-and-forget: a sink that fails logs the error and the
request that submitted the feedback still succeeds.
"""

import logging
import threading
from pathlib import Path
from typing import Optional

import orjson
import requests

from schemas.feedback import FeedbackRecord

logger = logging.getLogger(__name__)


def _serialize(record: FeedbackRecord) -> bytes:
    return orjson.dumps(record.model_dump(mode="json", by_alias=True, exclude_none=True))


class JsonlFeedbackSink:
    """Append one JSON line per feedback record to a local file."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(self, feedback: FeedbackRecord) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock, self.path.open("ab") as f:
                f.write(_serialize(feedback) + b"\n")
        except OSError as e:
            logger.error("Failed to write feedback %s: %s", feedback.message_id, e)
            return False
        logger.info("Recorded %s feedback for message %s", feedback.rating, feedback.message_id)
        return True


class WebhookFeedbackSink:
    """POST each feedback record to an external telemetry endpoint."""

    def __init__(self, url: str, timeout: int = 10, fallback: Optional[JsonlFeedbackSink] = None):
        self.url = url
        self.timeout = timeout
        self.fallback = fallback

    def record(self, feedback: FeedbackRecord) -> bool:
        try:
            response = requests.post(
                self.url,
                data=_serialize(feedback),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error("Feedback webhook failed for %s: %s", feedback.message_id, e)
            if self.fallback is not None:
                return self.fallback.record(feedback)
            return False
        logger.info("Forwarded %s feedback for message %s", feedback.rating, feedback.message_id)
        return True


def build_feedback_sink(feedback_path: str, webhook_url: Optional[str] = None):
    local = JsonlFeedbackSink(feedback_path)
    if webhook_url:
        return WebhookFeedbackSink(webhook_url, fallback=local)
    return local
