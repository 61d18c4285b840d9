from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

MAX_QUERY_CHARS = 500
MAX_RATIONALE_CHARS = 160
MAX_SUGGESTIONS = 3


def _is_remote_url(value: str | None) -> bool:
    return bool(value) and str(value).startswith(("http://", "https://"))


@dataclass(frozen=True)
class CatalogProduct:
    id: str
    name: str
    product_code: str = ""
    supplier_name: str = ""
    specification: str = ""
    storage_class: str = ""
    departments: tuple[str, ...] = ()
    unit: str = "P"
    image_urls: tuple[str, ...] = ()
    feature_summary: str = ""
    feature_embedding: list[float] | None = None
    feature_fingerprint: str | None = None

    def feature_fields(self) -> list[str]:
        """Fields that describe the product, in summary order."""
        return [
            self.name,
            self.product_code,
            self.supplier_name,
            self.specification,
            self.storage_class,
            " ".join(self.departments),
        ]

    def fingerprint_fields(self) -> list[str]:
        return [
            self.name,
            self.product_code,
            self.supplier_name,
            self.specification,
            self.storage_class,
            ",".join(sorted(self.departments)),
        ]

    @property
    def primary_image_url(self) -> str | None:
        for url in self.image_urls:
            if _is_remote_url(url):
                return url
        return None


@dataclass(frozen=True)
class StockPhotoRecord:
    id: str
    image_urls: tuple[str, ...]
    department: str = ""
    captured_at: str = ""
    assigned_product_id: str | None = None
    product_name: str = ""
    product_code: str = ""
    supplier_name: str = ""
    storage_class: str = ""
    feature_summary: str = ""
    feature_embedding: list[float] | None = None
    feature_fingerprint: str | None = None

    def feature_fields(self) -> list[str]:
        return [
            self.product_name,
            self.product_code,
            self.supplier_name,
            self.storage_class,
            self.department,
        ]

    def fingerprint_fields(self) -> list[str]:
        return [*self.feature_fields(), self.image_urls[0] if self.image_urls else ""]

    @property
    def primary_image_url(self) -> str | None:
        # only the canonical (first) photo is ever summarized
        if self.image_urls and _is_remote_url(self.image_urls[0]):
            return self.image_urls[0]
        return None


@dataclass(frozen=True)
class Query:
    free_text: str = ""
    photo_url: str | None = None
    department: str | None = None

    @classmethod
    def create(cls, free_text: str | None, photo_url: str | None = None, department: str | None = None) -> "Query":
        text = str(free_text or "").strip()[:MAX_QUERY_CHARS]
        photo = photo_url.strip() if isinstance(photo_url, str) and photo_url.strip() else None
        dept = department.strip() if isinstance(department, str) and department.strip() else None
        return cls(free_text=text, photo_url=photo, department=dept)

    @property
    def has_remote_photo(self) -> bool:
        return _is_remote_url(self.photo_url)


class SourceKind(str, Enum):
    PRODUCT = "product"
    STOCK_PHOTO = "photo"


@dataclass(frozen=True)
class Suggestion:
    source_kind: SourceKind
    product_id: str
    rationale: str
    confidence: float
    stock_photo_id: str | None = None

    def to_public(self) -> dict:
        payload = {
            "productId": self.product_id,
            "source": self.source_kind.value,
            "reason": self.rationale,
            "confidence": round(self.confidence, 4),
        }
        if self.stock_photo_id is not None:
            payload["photoRecordId"] = self.stock_photo_id
        return payload


@dataclass(frozen=True)
class Feature:
    summary: str
    embedding: list[float]

    @property
    def is_complete(self) -> bool:
        return bool(self.summary) and bool(self.embedding)


@dataclass
class MatchResult:
    suggestions: list[Suggestion]
    model: str
    strategy: str
    status: str = "ok"
    total_tokens: int | None = None
    skipped_candidates: list[str] = field(default_factory=list)

    def to_public(self) -> dict:
        payload: dict = {
            "suggestions": [s.to_public() for s in self.suggestions],
            "model": self.model,
        }
        if self.status != "ok":
            payload["message"] = self.status
        if self.total_tokens is not None:
            payload["totalTokens"] = self.total_tokens
        return payload
