"""Response classification: streamed model text to a Narrative or an Artifact."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Iterator

from ..types import (
    ARTIFACT_KINDS,
    RESUME_DEFAULT_TEMPLATE,
    Artifact,
    ModelStreamError,
    Narrative,
    Source,
    StreamChunk,
)

logger = logging.getLogger(__name__)

ERROR_NARRATIVE = "Sorry, something went wrong while generating a response. Please try again."


def decode_payload(text: str) -> Narrative | Artifact:
    """Try to read *text* as an artifact; fall back to narrative.

    The candidate is the span from the first ``{`` to the last ``}``.
    It is parsed exactly once and accepted only when it is an object
    whose ``kind`` is a known artifact kind.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return Narrative(text)

    try:
        parsed = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        logger.debug("Payload is not JSON, keeping narrative: %s", e)
        return Narrative(text)

    if not isinstance(parsed, dict):
        logger.debug("Payload JSON is %s, not an object", type(parsed).__name__)
        return Narrative(text)

    kind = parsed.pop("kind", None)
    if kind not in ARTIFACT_KINDS:
        logger.debug("Unknown artifact kind %r, keeping narrative", kind)
        return Narrative(text)

    if kind == "resume":
        parsed.setdefault("template", RESUME_DEFAULT_TEMPLATE)
    return Artifact(kind=kind, fields=parsed)


class StreamAccumulator:
    """Order-sensitive, append-only buffer for one streamed reply."""

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._sources: list[Source] = []
        self._seen_uris: set[str] = set()

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def sources(self) -> list[Source]:
        return list(self._sources)

    def feed(self, chunk: StreamChunk) -> Narrative:
        """Append a delta and return the partial narrative."""
        if chunk.text:
            self._parts.append(chunk.text)
        for source in chunk.sources:
            if not source.uri or source.uri in self._seen_uris:
                continue
            self._seen_uris.add(source.uri)
            self._sources.append(source)
        return Narrative(self.text)

    def finalize(self) -> tuple[Narrative | Artifact, list[Source]]:
        return decode_payload(self.text), self.sources

    def fail(self) -> tuple[Narrative, list[Source]]:
        return Narrative(ERROR_NARRATIVE), []


def guarded_stream(open_stream: Callable[[], Iterable[StreamChunk]]) -> Iterator[StreamChunk]:
    """Yield from ``open_stream()``; its failures surface as ModelStreamError.

    Errors raised by the consumer between chunks are not wrapped.
    """
    try:
        yield from open_stream()
    except ModelStreamError:
        raise
    except Exception as e:
        raise ModelStreamError(str(e) or type(e).__name__) from e


def classify_stream(
    chunks: Iterable[StreamChunk],
    publish: Callable[[Narrative, list[Source]], None] | None = None,
) -> tuple[Narrative | Artifact, list[Source]]:
    """Drain *chunks*, publishing each partial, and classify the result.

    Exceptions raised by the stream propagate to the caller.
    """
    acc = StreamAccumulator()
    for chunk in chunks:
        partial = acc.feed(chunk)
        if publish is not None:
            publish(partial, acc.sources)
    return acc.finalize()
