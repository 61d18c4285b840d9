from __future__ import annotations

import json
import logging
from typing import Any

from openai import OpenAI
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from stocktake_matcher.errors import MalformedModelResponse, TransientProviderFailure
from stocktake_matcher.models import (
    MAX_RATIONALE_CHARS,
    MAX_SUGGESTIONS,
    CatalogProduct,
    Query,
    SourceKind,
    Suggestion,
)
from stocktake_matcher.openai_utils import chat_json, run_with_timeout
from stocktake_matcher.text import truncate

_LOGGER = logging.getLogger(__name__)

FIELD_LIMITS = {"name": 120, "supplier": 80, "spec": 160, "storage": 32}

SYSTEM_PROMPT = (
    "You match photographed or described stock to products in a store's catalog.\n"
    "Only choose products from CATALOG, by their exact id.\n"
    "Return ONLY a JSON object of the form "
    '{"suggestions": [{"productId": "<id>", "reason": "<short reason>", "confidence": <0..1>}]}.\n'
    f"Give at most {MAX_SUGGESTIONS} suggestions, best first. "
    "Return an empty suggestions array when nothing fits."
)


class PromptSuggestion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    product_id: str = Field(validation_alias=AliasChoices("productId", "product_id", "id"))
    reason: str = Field(default="", validation_alias=AliasChoices("reason", "rationale"))
    confidence: float | None = None

    @field_validator("product_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("reason", mode="before")
    @classmethod
    def _coerce_reason(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: Any) -> float | None:
        try:
            return float(value)
        except (TypeError, ValueError):
            return None


class PromptResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    suggestions: list[Any] = Field(default_factory=list)


def catalog_entry(product: CatalogProduct) -> dict[str, Any]:
    return {
        "id": product.id,
        "code": product.product_code,
        "name": truncate(product.name, FIELD_LIMITS["name"]),
        "supplier": truncate(product.supplier_name, FIELD_LIMITS["supplier"]),
        "spec": truncate(product.specification, FIELD_LIMITS["spec"]),
        "storage": truncate(product.storage_class, FIELD_LIMITS["storage"]),
        "departments": list(product.departments),
    }


def build_user_content(query: Query, products: list[CatalogProduct]) -> list[dict[str, Any]]:
    catalog = "\n".join(json.dumps(catalog_entry(p), ensure_ascii=False) for p in products)
    text = (
        f"QUERY: {query.free_text or '(none, use the photo)'}\n"
        f"DEPARTMENT: {query.department or 'any'}\n\n"
        f"CATALOG (one JSON object per line):\n{catalog}\n"
    )
    content: list[dict[str, Any]] = [{"type": "text", "text": text}]
    if query.has_remote_photo:
        content.append({"type": "image_url", "image_url": {"url": query.photo_url, "detail": "low"}})
    return content


def default_confidence(position: int) -> float:
    return max(0.1, 0.9 - 0.1 * position)


def parse_suggestions(raw: str, candidate_ids: set[str], top_k: int = MAX_SUGGESTIONS) -> list[Suggestion]:
    """Validate model output against the candidate pool.

    Items with an unknown product id are dropped. The result is re-sorted by
    confidence so the order does not depend on how the model listed them.
    """
    try:
        envelope = PromptResponse.model_validate_json(raw)
    except ValidationError as exc:
        raise MalformedModelResponse(f"Model response is not a suggestions object: {exc}") from exc

    suggestions: list[Suggestion] = []
    seen: set[str] = set()
    for position, item in enumerate(envelope.suggestions):
        try:
            parsed = PromptSuggestion.model_validate(item)
        except ValidationError:
            _LOGGER.info("Dropping unparseable suggestion at position %d", position)
            continue
        if parsed.product_id not in candidate_ids or parsed.product_id in seen:
            continue
        seen.add(parsed.product_id)
        confidence = parsed.confidence if parsed.confidence is not None else default_confidence(position)
        suggestions.append(
            Suggestion(
                source_kind=SourceKind.PRODUCT,
                product_id=parsed.product_id,
                rationale=truncate(parsed.reason.strip(), MAX_RATIONALE_CHARS),
                confidence=min(1.0, max(0.0, confidence)),
            )
        )

    suggestions.sort(key=lambda s: s.confidence, reverse=True)
    return suggestions[:top_k]


class CatalogPromptMatcher:
    """Asks a chat model to pick products straight from the serialized catalog."""

    def __init__(self, client: OpenAI, model: str, *, timeout_seconds: float = 15.0) -> None:
        self.client = client
        self.model = model
        self.timeout_seconds = timeout_seconds

    def match(
        self,
        query: Query,
        products: list[CatalogProduct],
        top_k: int = MAX_SUGGESTIONS,
    ) -> tuple[list[Suggestion], int | None]:
        content = build_user_content(query, products)
        try:
            raw, total_tokens = run_with_timeout(
                "Catalog match request",
                lambda: chat_json(self.client, SYSTEM_PROMPT, content, self.model),
                self.timeout_seconds,
            )
        except TransientProviderFailure as exc:
            _LOGGER.warning("Catalog match request failed, returning no suggestions: %s", exc)
            return [], None

        try:
            suggestions = parse_suggestions(raw, {p.id for p in products}, top_k=top_k)
        except MalformedModelResponse as exc:
            _LOGGER.warning("Ignoring malformed catalog match response: %s", exc)
            return [], total_tokens
        return suggestions, total_tokens
