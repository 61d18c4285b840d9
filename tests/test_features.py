from __future__ import annotations

from dataclasses import replace

import pytest
from conftest import MemoryStore, letter_vector

from stocktake_matcher.embeddings import EmbeddingProvider
from stocktake_matcher.features import FeatureCache, feature_fingerprint, has_valid_feature
from stocktake_matcher.models import CatalogProduct, StockPhotoRecord
from stocktake_matcher.summarizer import Summarizer


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def cache(fake_client, store) -> FeatureCache:
    return FeatureCache(
        Summarizer(fake_client, "gpt-vision-test"),
        EmbeddingProvider(fake_client, "embed-test"),
        store,
    )


PRODUCT = CatalogProduct(id="p1", name="Green tea 500ml", product_code="D-10", supplier_name="Ocha Co")


def test_missing_feature_is_computed_and_persisted(cache, store, fake_client):
    feature = cache.ensure_product(PRODUCT)

    assert feature.summary == "Green tea 500ml D-10 Ocha Co"
    assert feature.embedding == letter_vector(feature.summary)
    assert store.saved_products["p1"] == (feature.summary, feature.embedding, feature_fingerprint(PRODUCT))
    assert fake_client.embeddings.calls == [feature.summary]


def test_existing_feature_is_reused_without_provider_calls(cache, store, fake_client):
    feature = cache.ensure_product(PRODUCT)
    summary, embedding, fingerprint = store.saved_products["p1"]
    stored = replace(PRODUCT, feature_summary=summary, feature_embedding=embedding, feature_fingerprint=fingerprint)
    calls_before = fake_client.call_count

    again = cache.ensure_product(stored)
    once_more = cache.ensure_product(stored)

    assert again == once_more == feature
    assert fake_client.call_count == calls_before


def test_legacy_feature_without_fingerprint_is_trusted(cache, fake_client):
    legacy = replace(PRODUCT, feature_summary="old summary", feature_embedding=[0.1, 0.2])
    assert has_valid_feature(legacy)
    assert cache.ensure_product(legacy).summary == "old summary"
    assert fake_client.call_count == 0


def test_edited_fields_invalidate_stored_feature(cache, store):
    stored = replace(
        PRODUCT,
        feature_summary="Green tea 500ml D-10 Ocha Co",
        feature_embedding=[1.0, 2.0],
        feature_fingerprint=feature_fingerprint(PRODUCT),
    )
    edited = replace(stored, name="Green tea 2L")

    assert not has_valid_feature(edited)
    feature = cache.ensure_product(edited)

    assert feature.summary == "Green tea 2L D-10 Ocha Co"
    assert store.saved_products["p1"][2] == feature_fingerprint(edited)


def test_summary_without_embedding_is_kept(cache, fake_client):
    partial = replace(PRODUCT, feature_summary="tea bottle label")
    feature = cache.ensure_product(partial)
    assert feature.summary == "tea bottle label"
    assert fake_client.completions.calls == []
    assert fake_client.embeddings.calls == ["tea bottle label"]


def test_persistence_failure_still_returns_feature(cache, store):
    store.fail_saves = True
    feature = cache.ensure_product(PRODUCT)
    assert feature.is_complete
    assert store.saved_products == {}


def test_failed_embedding_is_not_persisted(cache, store, fake_client):
    fake_client.embeddings.fail_when = lambda text: True
    feature = cache.ensure_product(PRODUCT)
    assert feature.embedding == []
    assert store.saved_products == {}


def test_photo_feature_uses_first_image_only(cache, store, fake_client):
    fake_client.completions.vision_reply = "Tea crate, 24 bottles"
    photo = StockPhotoRecord(
        id="r1",
        image_urls=("https://cdn.example.com/first.jpg", "https://cdn.example.com/second.jpg"),
        department="Drinks",
        assigned_product_id="p1",
    )

    feature = cache.ensure_stock_photo(photo)

    assert feature.summary == "Tea crate, 24 bottles"
    assert store.saved_photos["r1"][0] == "Tea crate, 24 bottles"
    urls = [c["messages"][1]["content"][0]["image_url"]["url"] for c in fake_client.completions.calls]
    assert urls == ["https://cdn.example.com/first.jpg"]


def test_entity_without_any_text_gets_no_feature(cache, store, fake_client):
    photo = StockPhotoRecord(id="r2", image_urls=())
    feature = cache.ensure(photo)
    assert not feature.is_complete
    assert fake_client.call_count == 0
    assert store.saved_photos == {}
