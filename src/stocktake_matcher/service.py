from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from openai import OpenAI

from stocktake_matcher.config import STRATEGY_CATALOG_PROMPT, STRATEGY_EMBEDDING, MatchConfig
from stocktake_matcher.db import CatalogStore
from stocktake_matcher.embeddings import EmbeddingCache, EmbeddingProvider
from stocktake_matcher.errors import NoCandidates, ProviderUnconfigured
from stocktake_matcher.features import FeatureCache, has_valid_feature
from stocktake_matcher.models import CatalogProduct, MatchResult, Query, StockPhotoRecord
from stocktake_matcher.openai_utils import OpenAIConfig, api_key_configured, make_client
from stocktake_matcher.prompt_matcher import CatalogPromptMatcher
from stocktake_matcher.strategies import (
    CandidatePool,
    CatalogPromptStrategy,
    EmbeddingStrategy,
    MatchRun,
    MatchState,
    MatchStrategy,
)
from stocktake_matcher.summarizer import Summarizer
from stocktake_matcher.text import search_products

_LOGGER = logging.getLogger(__name__)


class MatchService:
    """Entry point for AI-assisted product matching.

    ``client`` may be injected (tests, alternative endpoints); otherwise an
    OpenAI client is created on first use when ``OPENAI_API_KEY`` is set.
    """

    def __init__(
        self,
        store: CatalogStore,
        *,
        cfg: MatchConfig | None = None,
        openai_cfg: OpenAIConfig | None = None,
        client: OpenAI | None = None,
        embedding_cache: EmbeddingCache | None = None,
    ) -> None:
        self.store = store
        self.cfg = cfg or MatchConfig.from_env()
        self.openai_cfg = openai_cfg or OpenAIConfig.from_env()
        self.client = client
        self.embedding_cache = embedding_cache if embedding_cache is not None else EmbeddingCache()
        self._executor = ThreadPoolExecutor(
            max_workers=self.cfg.max_concurrency,
            thread_name_prefix="feature-ensure",
        )
        self._features: FeatureCache | None = None
        self._strategies: dict[str, MatchStrategy] = {}

    @property
    def ai_enabled(self) -> bool:
        return self.client is not None or api_key_configured()

    def _ensure_client(self) -> OpenAI:
        if not self.ai_enabled:
            raise ProviderUnconfigured()
        if self.client is None:
            self.client = make_client()
        return self.client

    def _ensure_components(self) -> FeatureCache:
        if self._features is not None:
            return self._features

        client = self._ensure_client()
        timeout = self.cfg.request_timeout_seconds
        summarizer = Summarizer(client, self.openai_cfg.vision_model, timeout_seconds=timeout)
        embedder = EmbeddingProvider(
            client,
            self.openai_cfg.embedding_model,
            timeout_seconds=timeout,
            cache=self.embedding_cache,
        )
        features = FeatureCache(summarizer, embedder, self.store)
        self._strategies = {
            STRATEGY_EMBEDDING: EmbeddingStrategy(
                summarizer, embedder, features, self._executor, top_k=self.cfg.top_k
            ),
            STRATEGY_CATALOG_PROMPT: CatalogPromptStrategy(
                CatalogPromptMatcher(client, self.openai_cfg.chat_model, timeout_seconds=timeout),
                top_k=self.cfg.top_k,
            ),
        }
        self._features = features
        return features

    def strategy(self, name: str | None = None) -> MatchStrategy:
        self._ensure_components()
        key = name or self.cfg.strategy
        chosen = self._strategies.get(key)
        if chosen is None:
            raise ValueError(f"Unknown match strategy: {key}")
        return chosen

    def collect(self, query: Query) -> CandidatePool:
        products = self.store.list_products(query.department)
        if not products:
            raise NoCandidates(query.department)

        product_ids = {p.id for p in products}
        photos = [
            photo
            for photo in self.store.list_recent_stock_photos(query.department, self.cfg.recent_photo_limit)
            if photo.assigned_product_id in product_ids
        ]
        return CandidatePool(products=products, stock_photos=photos)

    def match(self, query: Query, *, strategy: str | None = None) -> MatchResult:
        """Rank catalog products for ``query``.

        Raises ``ProviderUnconfigured`` before any I/O when no provider is
        available, ``ValueError`` for an empty query and
        ``EmbeddingUnavailable`` when the query itself cannot be embedded.
        An empty catalog is not an error: the result carries status
        ``"no-products"``.
        """
        run = MatchRun(query=query, deadline=time.monotonic() + self.cfg.match_timeout_seconds)
        chosen: MatchStrategy | None = None
        try:
            chosen = self.strategy(strategy)
            if not query.free_text and not query.has_remote_photo:
                raise ValueError("Enter a description or an http(s) photo URL to search.")

            run.advance(MatchState.COLLECTING)
            pool = self.collect(query)
            outcome = chosen.suggest(run, pool)
        except NoCandidates as exc:
            _LOGGER.info("%s", exc)
            run.advance(MatchState.DONE)
            return MatchResult(
                suggestions=[],
                model=chosen.model if chosen else "",
                strategy=chosen.name if chosen else "",
                status="no-products",
            )
        except Exception:
            run.advance(MatchState.FAILED)
            raise

        run.advance(MatchState.DONE)
        if outcome.skipped:
            _LOGGER.info("Match finished with %d candidate(s) skipped", len(outcome.skipped))
        return MatchResult(
            suggestions=outcome.suggestions,
            model=outcome.model,
            strategy=chosen.name,
            total_tokens=outcome.total_tokens,
            skipped_candidates=outcome.skipped,
        )

    def _ingest(self, entities: list[CatalogProduct] | list[StockPhotoRecord], label: str) -> int:
        features = self._ensure_components()
        updated = 0
        for entity in entities:
            if has_valid_feature(entity):
                continue
            try:
                feature = features.ensure(entity)
            except Exception:
                _LOGGER.warning("Feature ingest failed for %s %s", type(entity).__name__, entity.id, exc_info=True)
                continue
            if feature.is_complete:
                updated += 1
        _LOGGER.info("Ingested features for %d of %d %s", updated, len(entities), label)
        return updated

    def ingest_product_features(self) -> int:
        """Compute and store missing or stale product features."""
        return self._ingest(self.store.list_products(), "products")

    def ingest_stock_photo_features(self) -> int:
        """Compute and store missing or stale stock-photo features."""
        return self._ingest(self.store.list_stock_photos(), "stock photos")

    def search(self, keyword: str = "", supplier: str = "", department: str | None = None) -> list[CatalogProduct]:
        return search_products(self.store.list_products(), keyword, supplier, department)

    def stats(self) -> dict[str, Any]:
        details = dict(self.store.stats())
        details["ai_enabled"] = self.ai_enabled
        details["strategy"] = self.cfg.strategy
        details["embedding_cache_entries"] = len(self.embedding_cache)
        return details
