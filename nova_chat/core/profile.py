"""User profile merging and background extraction."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from ..types import ProfileExtractor, UserProfile

logger = logging.getLogger(__name__)


def _as_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _union(existing: list[str], extra: list[str]) -> list[str]:
    merged = list(existing)
    for item in extra:
        if item not in merged:
            merged.append(item)
    return merged


def merge_profile(profile: UserProfile, partial: dict | None) -> UserProfile:
    """Merge an extracted partial profile; idempotent and additive.

    ``name`` and ``profession`` are replaced only by non-empty values;
    ``interests`` and ``facts`` are unioned by string equality.
    """
    if not partial:
        return profile
    name = str(partial.get("name") or "").strip()
    profession = str(partial.get("profession") or "").strip()
    return UserProfile(
        name=name or profile.name,
        profession=profession or profile.profession,
        interests=_union(profile.interests, _as_list(partial.get("interests"))),
        facts=_union(profile.facts, _as_list(partial.get("facts"))),
    )


def has_information(partial: dict | None) -> bool:
    if not partial:
        return False
    return any(
        (len(v) > 0 if isinstance(v, (list, tuple)) else bool(v))
        for v in partial.values()
    )


class ProfileExtractionTask:
    """Run the extractor on a single background worker after a turn.

    Results with any information go to ``on_result``. Failures are logged
    at debug level and discarded.
    """

    def __init__(
        self,
        extractor: ProfileExtractor | None,
        on_result: Callable[[dict], None],
    ) -> None:
        self.extractor = extractor
        self.on_result = on_result
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="profile-extract")
        self._pending: list[Future] = []
        self._lock = threading.Lock()

    def submit(self, prompt: str, reply: str) -> Future | None:
        if self.extractor is None:
            return None
        future = self._pool.submit(self._run, prompt, reply)
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)
        return future

    def _run(self, prompt: str, reply: str) -> None:
        try:
            partial = self.extractor.extract(prompt, reply)
            if has_information(partial):
                self.on_result(partial)
        except Exception as e:
            logger.debug("Profile extraction failed: %s", e)

    def wait(self) -> None:
        """Block until every submitted extraction finishes."""
        with self._lock:
            pending = list(self._pending)
            self._pending = []
        for future in pending:
            future.result()

    def shutdown(self) -> None:
        self._pool.shutdown(wait=True)
