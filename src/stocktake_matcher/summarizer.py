from __future__ import annotations

import logging

from openai import OpenAI

from stocktake_matcher.errors import TransientProviderFailure
from stocktake_matcher.models import CatalogProduct, StockPhotoRecord
from stocktake_matcher.openai_utils import run_with_timeout, summarize_image
from stocktake_matcher.text import truncate

_LOGGER = logging.getLogger(__name__)

MAX_SUMMARY_CHARS = 120

SUMMARY_INSTRUCTION = (
    "Describe the product or packaging shown in the photo in 20-40 characters. "
    "Prioritize text printed on the label, then capacity, brand, and color/shape. "
    "Reply with the description only."
)


def structured_text(entity: CatalogProduct | StockPhotoRecord) -> str:
    return " ".join(part for part in entity.feature_fields() if part)


class Summarizer:
    """Short canonical descriptions for products and stock photos."""

    def __init__(self, client: OpenAI, model: str, *, timeout_seconds: float = 15.0) -> None:
        self.client = client
        self.model = model
        self.timeout_seconds = timeout_seconds

    def summarize_image(self, image_url: str | None, fallback: str = "") -> str:
        """Describe one photo; any provider failure yields ``fallback``."""
        if not image_url or not image_url.startswith(("http://", "https://")):
            return fallback
        try:
            text = run_with_timeout(
                "Vision summary request",
                lambda: summarize_image(self.client, image_url, SUMMARY_INSTRUCTION, self.model),
                self.timeout_seconds,
            )
        except TransientProviderFailure as exc:
            _LOGGER.warning("Falling back to text summary for %s: %s", image_url, exc)
            return fallback
        if not text:
            return fallback
        return truncate(text, MAX_SUMMARY_CHARS)

    def summarize(
        self,
        entity: CatalogProduct | StockPhotoRecord,
        preferred_image_url: str | None = None,
    ) -> str:
        fallback = truncate(structured_text(entity), MAX_SUMMARY_CHARS)
        image_url = preferred_image_url or entity.primary_image_url
        return self.summarize_image(image_url, fallback)
