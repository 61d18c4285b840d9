from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from concurrent.futures import Executor, wait
from dataclasses import dataclass, field
from enum import Enum

from stocktake_matcher.embeddings import EmbeddingProvider
from stocktake_matcher.errors import EmbeddingUnavailable
from stocktake_matcher.features import FeatureCache
from stocktake_matcher.models import (
    MAX_RATIONALE_CHARS,
    MAX_SUGGESTIONS,
    CatalogProduct,
    Feature,
    Query,
    SourceKind,
    StockPhotoRecord,
    Suggestion,
)
from stocktake_matcher.prompt_matcher import CatalogPromptMatcher
from stocktake_matcher.retrieval import rank
from stocktake_matcher.summarizer import Summarizer
from stocktake_matcher.text import truncate

_LOGGER = logging.getLogger(__name__)

PHOTO_ONLY_QUERY = "product shown in the photo"


class MatchState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    EMBEDDING = "embedding"
    RANKING = "ranking"
    DONE = "done"
    FAILED = "failed"


@dataclass
class MatchRun:
    """Book-keeping for one match request."""

    query: Query
    deadline: float
    state: MatchState = MatchState.IDLE
    history: list[MatchState] = field(default_factory=lambda: [MatchState.IDLE])

    def advance(self, state: MatchState) -> None:
        _LOGGER.debug("match %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())


@dataclass
class CandidatePool:
    products: list[CatalogProduct]
    stock_photos: list[StockPhotoRecord] = field(default_factory=list)

    @property
    def product_ids(self) -> set[str]:
        return {p.id for p in self.products}


@dataclass
class StrategyOutcome:
    suggestions: list[Suggestion]
    model: str
    total_tokens: int | None = None
    skipped: list[str] = field(default_factory=list)


class MatchStrategy(ABC):
    """Turns a query and a candidate pool into ranked suggestions."""

    name: str

    @property
    @abstractmethod
    def model(self) -> str:
        """Identifier of the model whose output decides the ranking."""

    @abstractmethod
    def suggest(self, run: MatchRun, pool: CandidatePool) -> StrategyOutcome:
        """Rank the pool for ``run.query``."""


class EmbeddingStrategy(MatchStrategy):
    name = "embedding"

    def __init__(
        self,
        summarizer: Summarizer,
        embedder: EmbeddingProvider,
        features: FeatureCache,
        executor: Executor,
        top_k: int = MAX_SUGGESTIONS,
    ) -> None:
        self.summarizer = summarizer
        self.embedder = embedder
        self.features = features
        self.executor = executor
        self.top_k = top_k

    @property
    def model(self) -> str:
        return self.embedder.model

    def query_text(self, query: Query) -> str:
        text = " ".join(part for part in (query.free_text, query.department) if part)
        if query.has_remote_photo:
            photo_summary = self.summarizer.summarize_image(query.photo_url, fallback=query.free_text)
            text = " ".join(part for part in (text, photo_summary) if part) or PHOTO_ONLY_QUERY
        return text.strip()

    def _candidate_features(
        self,
        run: MatchRun,
        entities: list[CatalogProduct | StockPhotoRecord],
    ) -> tuple[dict[int, Feature], list[str]]:
        futures = [self.executor.submit(self.features.ensure, entity) for entity in entities]
        remaining = run.remaining()
        _, not_done = wait(futures, timeout=remaining if math.isfinite(remaining) else None)

        features: dict[int, Feature] = {}
        skipped: list[str] = []
        for index, (entity, future) in enumerate(zip(entities, futures)):
            if future in not_done:
                # left running; it still fills the cache for the next request
                _LOGGER.warning("Feature for %s %s not ready before the deadline", type(entity).__name__, entity.id)
                skipped.append(entity.id)
                continue
            exc = future.exception()
            if exc is not None:
                _LOGGER.warning("Skipping candidate %s %s: %s", type(entity).__name__, entity.id, exc)
                skipped.append(entity.id)
                continue
            features[index] = future.result()
        return features, skipped

    def suggest(self, run: MatchRun, pool: CandidatePool) -> StrategyOutcome:
        run.advance(MatchState.EMBEDDING)
        query_vector = self.embedder.embed(self.query_text(run.query) or PHOTO_ONLY_QUERY)
        if not query_vector:
            raise EmbeddingUnavailable()

        entities: list[CatalogProduct | StockPhotoRecord] = [*pool.products, *pool.stock_photos]
        features, skipped = self._candidate_features(run, entities)

        run.advance(MatchState.RANKING)
        ranked = rank(
            query_vector,
            [(index, feature.embedding) for index, feature in features.items()],
            top_k=len(features),
        )

        suggestions: list[Suggestion] = []
        seen_products: set[str] = set()
        for index, score in ranked:
            entity = entities[index]
            if isinstance(entity, StockPhotoRecord):
                product_id = entity.assigned_product_id or ""
                source, photo_id = SourceKind.STOCK_PHOTO, entity.id
            else:
                product_id = entity.id
                source, photo_id = SourceKind.PRODUCT, None
            if product_id in seen_products:
                continue
            seen_products.add(product_id)
            suggestions.append(
                Suggestion(
                    source_kind=source,
                    product_id=product_id,
                    rationale=truncate(features[index].summary, MAX_RATIONALE_CHARS),
                    confidence=min(1.0, score),
                    stock_photo_id=photo_id,
                )
            )
            if len(suggestions) >= self.top_k:
                break

        return StrategyOutcome(suggestions=suggestions, model=self.model, skipped=skipped)


class CatalogPromptStrategy(MatchStrategy):
    name = "catalog_prompt"

    def __init__(self, matcher: CatalogPromptMatcher, top_k: int = MAX_SUGGESTIONS) -> None:
        self.matcher = matcher
        self.top_k = top_k

    @property
    def model(self) -> str:
        return self.matcher.model

    def suggest(self, run: MatchRun, pool: CandidatePool) -> StrategyOutcome:
        run.advance(MatchState.RANKING)
        suggestions, total_tokens = self.matcher.match(run.query, pool.products, top_k=self.top_k)
        return StrategyOutcome(suggestions=suggestions, model=self.model, total_tokens=total_tokens)
