from unittest.mock import patch

import orjson
import requests

from schemas.feedback import FeedbackRecord
from webapp.feedback import JsonlFeedbackSink, WebhookFeedbackSink, build_feedback_sink


def feedback(**overrides):
    data = {"messageId": "m-1", "rating": "positive"}
    data.update(overrides)
    return FeedbackRecord.model_validate(data)


def test_jsonl_sink_appends_lines(tmp_path):
    path = tmp_path / "nested" / "feedback.jsonl"
    sink = JsonlFeedbackSink(str(path))

    assert sink.record(feedback())
    assert sink.record(feedback(messageId="m-2", rating="negative", comment="Outdated"))

    rows = [orjson.loads(line) for line in path.read_bytes().splitlines()]
    assert [r["messageId"] for r in rows] == ["m-1", "m-2"]
    assert rows[1]["comment"] == "Outdated"
    assert "timestamp" in rows[0]


def test_webhook_failure_falls_back_to_file(tmp_path):
    local = JsonlFeedbackSink(str(tmp_path / "feedback.jsonl"))
    sink = WebhookFeedbackSink("https://telemetry.test/feedback", fallback=local)

    with patch("webapp.feedback.requests.post", side_effect=requests.ConnectionError("down")):
        assert sink.record(feedback())

    assert (tmp_path / "feedback.jsonl").exists()


def test_build_feedback_sink(tmp_path):
    assert isinstance(build_feedback_sink(str(tmp_path / "f.jsonl")), JsonlFeedbackSink)
    assert isinstance(build_feedback_sink(str(tmp_path / "f.jsonl"), "https://hook.test"), WebhookFeedbackSink)


def test_source_names_are_accepted_as_strings():
    record = feedback(sources=["Guide (example.com)"])
    assert record.sources[0].file == "Guide (example.com)"
    assert feedback(sources=None).sources == []
