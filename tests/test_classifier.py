"""Tests for response classification (decode_payload, StreamAccumulator, classify_stream)."""

import logging

import pytest

from nova_chat.core.classifier import (
    ERROR_NARRATIVE,
    StreamAccumulator,
    classify_stream,
    decode_payload,
)
from nova_chat.types import Artifact, Narrative, Source, StreamChunk


class TestDecodePayload:
    def test_noisy_table(self):
        text = 'noise {"kind":"table","title":"T","rows":[]} trailing'
        assert decode_payload(text) == Artifact("table", {"title": "T", "rows": []})

    def test_resume_gets_default_template(self):
        result = decode_payload('{"kind": "resume", "name": "A"}')
        assert result == Artifact("resume", {"name": "A", "template": "elegant"})

    def test_resume_keeps_supplied_template(self):
        result = decode_payload('{"kind": "resume", "template": "modern"}')
        assert result.fields["template"] == "modern"

    def test_extra_fields_preserved(self):
        result = decode_payload('{"kind": "chart", "data": {"x": [1]}, "extra": true}')
        assert result.fields == {"data": {"x": [1]}, "extra": True}

    @pytest.mark.parametrize("text", [
        "plain text answer",
        "",
        '{"kind": "poem", "lines": []}',
        '{"title": "no kind"}',
        '{"kind": "table", "rows": [}',
        "} reversed braces {",
        "Use `{x}` in f-strings",
    ])
    def test_fallback_is_exact_text(self, text):
        assert decode_payload(text) == Narrative(text)

    def test_object_inside_array_span(self):
        text = 'list [{"kind": "table"}] here'
        assert decode_payload(text) == Artifact("table", {})

    def test_two_objects_fall_back(self):
        text = '{"kind": "table"} and {"kind": "chart"}'
        assert decode_payload(text) == Narrative(text)

    def test_malformed_logged_at_debug(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="nova_chat.core.classifier"):
            decode_payload('{"kind": "table", oops}')
        assert any(r.levelno == logging.DEBUG for r in caplog.records)


class TestStreamAccumulator:
    def test_feed_returns_growing_partial(self):
        acc = StreamAccumulator()
        assert acc.feed(StreamChunk(text="Hel")) == Narrative("Hel")
        assert acc.feed(StreamChunk(text="lo")) == Narrative("Hello")

    def test_sources_deduplicated_and_filtered(self):
        acc = StreamAccumulator()
        acc.feed(StreamChunk(sources=[Source("https://a", "A"), Source("", "blank")]))
        acc.feed(StreamChunk(sources=[Source("https://a", "A again"), Source("https://b", "B")]))
        assert acc.sources == [Source("https://a", "A"), Source("https://b", "B")]

    def test_finalize_narrative_is_full_stream(self):
        acc = StreamAccumulator()
        for part in ["Line one\n", "  spaced  ", "$$x^2$$"]:
            acc.feed(StreamChunk(text=part))
        content, _ = acc.finalize()
        assert content == Narrative("Line one\n  spaced  $$x^2$$")

    def test_fail(self):
        acc = StreamAccumulator()
        acc.feed(StreamChunk(text="partial", sources=[Source("https://a")]))
        assert acc.fail() == (Narrative(ERROR_NARRATIVE), [])


class TestClassifyStream:
    def test_publishes_each_partial(self):
        published = []
        chunks = [StreamChunk(text="a"), StreamChunk(text="b"), StreamChunk(text="c")]
        content, sources = classify_stream(chunks, lambda p, s: published.append(p.text))
        assert published == ["a", "ab", "abc"]
        assert content == Narrative("abc")
        assert sources == []

    def test_artifact_across_chunks(self):
        chunks = [StreamChunk(text='```json\n{"kind": "study_'), StreamChunk(text='quiz", "q": []}\n```')]
        content, _ = classify_stream(chunks)
        assert content == Artifact("study_quiz", {"q": []})

    def test_stream_error_propagates(self):
        def chunks():
            yield StreamChunk(text="x")
            raise ConnectionError("dropped")

        with pytest.raises(ConnectionError):
            classify_stream(chunks())
