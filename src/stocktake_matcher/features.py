from __future__ import annotations

import hashlib
import logging
from typing import Callable

from stocktake_matcher.db import CatalogStore
from stocktake_matcher.embeddings import EmbeddingProvider
from stocktake_matcher.models import CatalogProduct, Feature, StockPhotoRecord
from stocktake_matcher.summarizer import Summarizer, structured_text
from stocktake_matcher.text import normalize

_LOGGER = logging.getLogger(__name__)

SaveFn = Callable[[str, str, list[float], str], None]


def feature_fingerprint(entity: CatalogProduct | StockPhotoRecord) -> str:
    payload = "\x1f".join(entity.fingerprint_fields()).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def has_valid_feature(entity: CatalogProduct | StockPhotoRecord) -> bool:
    """True when the stored feature can be reused as is.

    Rows written before fingerprints existed carry ``None`` and are trusted.
    """
    if not entity.feature_summary or not entity.feature_embedding:
        return False
    stored = entity.feature_fingerprint
    return stored is None or stored == feature_fingerprint(entity)


class FeatureCache:
    def __init__(self, summarizer: Summarizer, embedder: EmbeddingProvider, store: CatalogStore) -> None:
        self.summarizer = summarizer
        self.embedder = embedder
        self.store = store

    def ensure_product(self, product: CatalogProduct) -> Feature:
        return self._ensure(product, self.store.save_product_feature)

    def ensure_stock_photo(self, photo: StockPhotoRecord) -> Feature:
        return self._ensure(photo, self.store.save_stock_photo_feature)

    def ensure(self, entity: CatalogProduct | StockPhotoRecord) -> Feature:
        if isinstance(entity, StockPhotoRecord):
            return self.ensure_stock_photo(entity)
        return self.ensure_product(entity)

    def _ensure(self, entity: CatalogProduct | StockPhotoRecord, save: SaveFn) -> Feature:
        if has_valid_feature(entity):
            return Feature(summary=entity.feature_summary, embedding=list(entity.feature_embedding or []))

        fingerprint = feature_fingerprint(entity)
        stale = entity.feature_fingerprint is not None and entity.feature_fingerprint != fingerprint
        if entity.feature_summary and not stale:
            summary = entity.feature_summary
        else:
            summary = self.summarizer.summarize(entity)
        if not summary:
            summary = normalize(structured_text(entity))

        embedding = self.embedder.embed(summary)
        feature = Feature(summary=summary, embedding=embedding)
        if not embedding:
            # nothing worth persisting; the next request retries
            return feature

        try:
            save(entity.id, summary, embedding, fingerprint)
        except Exception:
            _LOGGER.exception("Failed to persist feature for %s %s", type(entity).__name__, entity.id)
        return feature
