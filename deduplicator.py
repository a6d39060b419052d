"""
Hair Care Recommender — Multi-source Deduplicator
deduplicator.py

Collapses catalog records that describe the same physical product.
Identity is the barcode when present, else normalized brand + name.
Near-duplicate names ("Shampoo 250ml" vs "Shampoo") are NOT merged.
"""
from __future__ import annotations
import logging
import re
from typing import Any, Iterable, Optional

from models import CatalogRecord, _ordered_unique

logger = logging.getLogger(__name__)

SCALAR_FIELDS = (
    'name', 'brand', 'upc', 'description', 'image_url',
    'price', 'currency', 'source_id', 'url',
)
LIST_FIELDS = ('tags', 'ingredients', 'normalized_ingredients')
SUBRECORD_FIELDS = ('ingredient_safety', 'sustainability', 'reviews')


def normalize_key_part(text: Optional[str]) -> str:
    return re.sub(r'[^a-z0-9]', '', (text or '').lower())


def identity_key(record: CatalogRecord) -> str:
    if record.upc and record.upc.strip():
        return f"upc:{record.upc.strip()}"
    return f"brand_name:{normalize_key_part(record.brand)}_{normalize_key_part(record.name)}"


def merge_records(first: CatalogRecord, other: CatalogRecord) -> CatalogRecord:
    """
    Merge ``other`` into ``first``. Scalars keep the first non-empty value,
    list fields become the ordered union, enrichment sub-records keep the
    first non-null value whole. ``id`` and ``source`` stay with ``first``.
    """
    updates: dict[str, Any] = {}
    for name in SCALAR_FIELDS:
        if _is_empty(getattr(first, name)) and not _is_empty(getattr(other, name)):
            updates[name] = getattr(other, name)
    for name in LIST_FIELDS:
        merged = _ordered_unique([*getattr(first, name), *getattr(other, name)])
        if merged != getattr(first, name):
            updates[name] = merged
    for name in SUBRECORD_FIELDS:
        if getattr(first, name) is None and getattr(other, name) is not None:
            updates[name] = getattr(other, name)
    return first.model_copy(update=updates) if updates else first


def deduplicate(records: Iterable[CatalogRecord]) -> list[CatalogRecord]:
    """
    Collapse records sharing an identity key. Output follows first-seen key
    order, and running it twice gives the same result as running it once.
    """
    merged: dict[str, CatalogRecord] = {}
    total = 0
    for record in records:
        total += 1
        key = identity_key(record)
        existing = merged.get(key)
        merged[key] = record if existing is None else merge_records(existing, record)

    if total != len(merged):
        logger.info(f"Deduplicated {total} records into {len(merged)} products")
    return list(merged.values())


def _is_empty(val: Any) -> bool:
    return val is None or (isinstance(val, str) and not val.strip())
