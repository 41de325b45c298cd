"""Provider base class: hook methods plus a shared retrying JSON POST."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

import httpx

from ..types import ProviderError

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BACKOFF = [1.0, 2.0, 4.0]
MAX_RETRY_AFTER = 30.0


def is_transient(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def retry_delay(attempt: int, response: httpx.Response | None = None) -> float:
    """Backoff for *attempt*, or the server's ``Retry-After`` seconds when given."""
    if response is not None:
        raw = response.headers.get("retry-after")
        if raw:
            try:
                return min(max(float(raw), 0.0), MAX_RETRY_AFTER)
            except ValueError:
                pass
    return RETRY_BACKOFF[min(attempt, len(RETRY_BACKOFF) - 1)]


class BaseProvider(ABC):
    """Subclasses supply name, URL, headers and the completion payload shape.

    ``post_json`` is shared by completions and any other JSON endpoint the
    subclass talks to (image generation).
    """

    _timeout: float = 60.0

    def __init__(self) -> None:
        self.last_usage: dict = {}

    @abstractmethod
    def _provider_name(self) -> str: ...

    @abstractmethod
    def _get_url(self) -> str: ...

    @abstractmethod
    def _get_headers(self) -> dict: ...

    @abstractmethod
    def _build_payload(self, system: str, user: str, max_tokens: int) -> dict: ...

    @abstractmethod
    def _extract_text(self, data: dict) -> str: ...

    def _error(self, message: str, status_code: int | None = None) -> ProviderError:
        return ProviderError(message, provider=self._provider_name(), status_code=status_code)

    def post_json(self, url: str, payload: dict) -> dict:
        """POST *payload*; 429, 5xx and transport errors are retried."""
        headers = self._get_headers()
        last_error: ProviderError | None = None

        for attempt in range(MAX_RETRIES):
            response: httpx.Response | None = None
            try:
                with httpx.Client(timeout=self._timeout) as client:
                    response = client.post(url, headers=headers, json=payload)
            except httpx.HTTPError as e:
                last_error = self._error(f"HTTP error: {e}")
            else:
                if response.status_code == 200:
                    return response.json()
                last_error = self._error(
                    f"HTTP {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )
                if not is_transient(response.status_code):
                    raise last_error

            if attempt < MAX_RETRIES - 1:
                delay = retry_delay(attempt, response)
                logger.warning(
                    "%s request failed (%s), retry %d/%d in %.1fs",
                    self._provider_name(), last_error, attempt + 1, MAX_RETRIES - 1, delay,
                )
                time.sleep(delay)

        raise last_error or self._error("Max retries exceeded")

    def complete(self, system: str, user: str, max_tokens: int) -> str:
        data = self.post_json(self._get_url(), self._build_payload(system, user, max_tokens))
        self.last_usage = data.get("usage", {})
        return self._extract_text(data)
