from __future__ import annotations

import threading
import time
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable

import pytest

from stocktake_matcher.config import MatchConfig
from stocktake_matcher.db import InventoryDB
from stocktake_matcher.models import CatalogProduct, StockPhotoRecord
from stocktake_matcher.openai_utils import OpenAIConfig


def letter_vector(text: str) -> list[float]:
    """Letter histogram plus a constant bias, so every pair scores above zero."""
    counts = [0.0] * 27
    for ch in text.lower():
        if "a" <= ch <= "z":
            counts[ord(ch) - ord("a")] += 1.0
    counts[26] = 1.0
    return counts


class FakeEmbeddings:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.fail_when: Callable[[str], bool] = lambda text: False
        self.hold_when: Callable[[str], bool] = lambda text: False
        self.release = threading.Event()
        self.delay = 0.0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def create(self, *, model: str, input: list[str]) -> Any:
        text = input[0]
        with self._lock:
            self.calls.append(text)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.hold_when(text):
                self.release.wait(timeout=3)
            if self.fail_when(text):
                raise RuntimeError("embedding backend unavailable")
            return SimpleNamespace(data=[SimpleNamespace(embedding=letter_vector(text))])
        finally:
            with self._lock:
                self.active -= 1


class FakeCompletions:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.vision_reply: str | Exception = ""
        self.json_reply: str | Exception = '{"suggestions": []}'

    def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        reply = self.json_reply if "response_format" in kwargs else self.vision_reply
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=reply))],
            usage=SimpleNamespace(total_tokens=42),
        )


class FakeOpenAI:
    def __init__(self) -> None:
        self.embeddings = FakeEmbeddings()
        self.chat = SimpleNamespace(completions=FakeCompletions())

    @property
    def completions(self) -> FakeCompletions:
        return self.chat.completions

    @property
    def call_count(self) -> int:
        return len(self.embeddings.calls) + len(self.chat.completions.calls)


class MemoryStore:
    """In-memory stand-in for the inventory database."""

    def __init__(
        self,
        products: list[CatalogProduct] | None = None,
        photos: list[StockPhotoRecord] | None = None,
    ) -> None:
        self.products = list(products or [])
        self.photos = list(photos or [])
        self.saved_products: dict[str, tuple[str, list[float], str]] = {}
        self.saved_photos: dict[str, tuple[str, list[float], str]] = {}
        self.fail_saves = False

    def list_products(self, department: str | None = None) -> list[CatalogProduct]:
        return [p for p in self.products if not department or department in p.departments]

    def list_recent_stock_photos(self, department: str | None = None, limit: int = 200) -> list[StockPhotoRecord]:
        photos = sorted(self.photos, key=lambda r: r.captured_at, reverse=True)
        return [r for r in photos if not department or r.department == department][:limit]

    def list_stock_photos(self) -> list[StockPhotoRecord]:
        return list(self.photos)

    def save_product_feature(self, product_id: str, summary: str, embedding: list[float], fingerprint: str) -> None:
        if self.fail_saves:
            raise OSError("database is locked")
        self.saved_products[product_id] = (summary, embedding, fingerprint)

    def save_stock_photo_feature(self, photo_id: str, summary: str, embedding: list[float], fingerprint: str) -> None:
        if self.fail_saves:
            raise OSError("database is locked")
        self.saved_photos[photo_id] = (summary, embedding, fingerprint)

    def stats(self) -> dict[str, Any]:
        return {"product_count": len(self.products), "photo_count": len(self.photos)}


@pytest.fixture
def fake_client():
    client = FakeOpenAI()
    yield client
    client.embeddings.release.set()


@pytest.fixture
def openai_cfg() -> OpenAIConfig:
    return OpenAIConfig(chat_model="gpt-test", vision_model="gpt-vision-test", embedding_model="embed-test")


@pytest.fixture
def match_cfg(tmp_path: Path) -> MatchConfig:
    return MatchConfig(
        max_concurrency=2,
        request_timeout_seconds=5.0,
        match_timeout_seconds=30.0,
        db_path=tmp_path / "stocktake.db",
    )


@pytest.fixture
def db(match_cfg: MatchConfig) -> InventoryDB:
    return InventoryDB(match_cfg.db_path)
