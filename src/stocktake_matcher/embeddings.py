from __future__ import annotations

import logging
import threading

from openai import OpenAI

from stocktake_matcher.errors import TransientProviderFailure
from stocktake_matcher.openai_utils import run_with_timeout, text_embedding

_LOGGER = logging.getLogger(__name__)


class EmbeddingCache:
    """Exact-text memo of embedding vectors.

    Empty vectors are never stored, so a failed lookup is retried next time.
    """

    def __init__(self) -> None:
        self._vectors: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def get(self, text: str) -> list[float] | None:
        with self._lock:
            return self._vectors.get(text)

    def put(self, text: str, vector: list[float]) -> None:
        if not vector:
            return
        with self._lock:
            self._vectors[text] = vector

    def __len__(self) -> int:
        with self._lock:
            return len(self._vectors)

    def __contains__(self, text: object) -> bool:
        with self._lock:
            return text in self._vectors


class EmbeddingProvider:
    def __init__(
        self,
        client: OpenAI,
        model: str,
        *,
        timeout_seconds: float = 15.0,
        cache: EmbeddingCache | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.cache = cache if cache is not None else EmbeddingCache()

    def embed(self, text: str) -> list[float]:
        """Return the embedding of ``text``, or ``[]`` if the provider failed."""
        cached = self.cache.get(text)
        if cached:
            return cached
        if not text:
            return []

        try:
            values = run_with_timeout(
                "Embedding request",
                lambda: text_embedding(self.client, text, self.model),
                self.timeout_seconds,
            )
        except TransientProviderFailure as exc:
            _LOGGER.warning("Embedding unavailable for %d chars of text: %s", len(text), exc)
            return []

        vector = [float(v) for v in values or []]
        self.cache.put(text, vector)
        return vector
