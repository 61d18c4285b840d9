from __future__ import annotations

import re
import unicodedata
from typing import Iterable

from stocktake_matcher.models import CatalogProduct

_KATAKANA_FIRST = 0x30A1
_KATAKANA_LAST = 0x30F3
_KANA_OFFSET = 0x60
_WHITESPACE = re.compile(r"\s+")


def _fold(text: str) -> str:
    text = unicodedata.normalize("NFKC", text).lower()
    chars = [
        chr(ord(ch) - _KANA_OFFSET) if _KATAKANA_FIRST <= ord(ch) <= _KATAKANA_LAST else ch
        for ch in text
    ]
    return _WHITESPACE.sub("", "".join(chars))


def normalize(value: str | None) -> str:
    """Fold width, case and katakana so that free text compares loosely.

    Katakana in U+30A1..U+30F3 is shifted onto hiragana and every whitespace
    character (full-width space included) is removed. Dropping whitespace can
    bring a combining mark next to its base (``"e \\u0301"``), so folding is
    repeated until the text stops changing.
    """
    text = value or ""
    folded = _fold(text)
    while folded != text:
        text, folded = folded, _fold(folded)
    return folded


def truncate(value: str | None, limit: int) -> str:
    """Cut ``value`` to at most ``limit`` characters, ellipsis included."""
    text = value or ""
    if len(text) <= limit:
        return text
    return f"{text[:max(0, limit - 1)]}…"


def search_products(
    products: Iterable[CatalogProduct],
    keyword: str = "",
    supplier: str = "",
    department: str | None = None,
) -> list[CatalogProduct]:
    """Keyword search used by the assignment screens.

    Products without any department stay visible under every department, but
    products that do list the department are ordered first.
    """
    kw = normalize(keyword.strip())
    sp = normalize(supplier.strip())

    hits: list[CatalogProduct] = []
    for product in products:
        if kw and kw not in normalize(product.name) and kw not in normalize(product.product_code):
            continue
        if sp and sp not in normalize(product.supplier_name):
            continue
        if department and product.departments and department not in product.departments:
            continue
        hits.append(product)

    if not department:
        return hits
    # sorted() is stable, so ties keep catalog order
    return sorted(hits, key=lambda p: 0 if department in p.departments else 1)
