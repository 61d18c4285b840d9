from __future__ import annotations

from stocktake_matcher.models import CatalogProduct, StockPhotoRecord


def _seed(db):
    db.upsert_products(
        [
            CatalogProduct(id="p1", name="Salmon", departments=("Frozen",), image_urls=("https://cdn.example.com/p1.jpg",)),
            CatalogProduct(id="p2", name="Apple", departments=("Produce",)),
            CatalogProduct(id="p3", name="Shared bag", departments=("Frozen", "Produce")),
        ]
    )
    db.upsert_stock_photos(
        [
            StockPhotoRecord(id="r1", image_urls=("https://cdn.example.com/r1.jpg",), department="Frozen",
                             captured_at="2026-09-01T10:00:00+00:00", assigned_product_id="p1"),
            StockPhotoRecord(id="r2", image_urls=("https://cdn.example.com/r2.jpg",), department="Frozen",
                             captured_at="2026-09-03T10:00:00+00:00"),
            StockPhotoRecord(id="r3", image_urls=("https://cdn.example.com/r3.jpg",), department="Produce",
                             captured_at="2026-09-02T10:00:00+00:00", assigned_product_id="p2"),
        ]
    )


def test_list_products_filters_by_department_membership(db):
    _seed(db)
    assert [p.id for p in db.list_products()] == ["p1", "p2", "p3"]
    assert [p.id for p in db.list_products("Frozen")] == ["p1", "p3"]
    assert db.list_products("Bakery") == []
    assert db.list_products("Frozen")[0].image_urls == ("https://cdn.example.com/p1.jpg",)


def test_recent_stock_photos_are_newest_first_and_limited(db):
    _seed(db)
    assert [r.id for r in db.list_recent_stock_photos()] == ["r2", "r3", "r1"]
    assert [r.id for r in db.list_recent_stock_photos("Frozen")] == ["r2", "r1"]
    assert [r.id for r in db.list_recent_stock_photos(None, limit=1)] == ["r2"]


def test_saved_features_are_loaded_back(db):
    _seed(db)
    db.save_product_feature("p2", "red apple", [0.5, 0.25], "abc")
    db.save_stock_photo_feature("r1", "salmon box", [1.0], "def")

    apple = db.list_products("Produce")[0]
    assert (apple.feature_summary, apple.feature_embedding, apple.feature_fingerprint) == ("red apple", [0.5, 0.25], "abc")
    photo = next(r for r in db.list_stock_photos() if r.id == "r1")
    assert photo.feature_embedding == [1.0]
    assert db.stats() == {"product_count": 3, "product_feature_count": 1, "photo_count": 3, "photo_feature_count": 1}


def test_product_upsert_keeps_stored_feature(db):
    _seed(db)
    db.save_product_feature("p1", "salmon", [1.0], "fp")
    db.upsert_products([CatalogProduct(id="p1", name="Salmon 2kg", departments=("Frozen",))])

    salmon = db.list_products("Frozen")[0]
    assert salmon.name == "Salmon 2kg"
    assert salmon.feature_fingerprint == "fp"
