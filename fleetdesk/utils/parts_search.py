from __future__ import annotations

import re


def compact_search_text(value) -> str:
    if value is None:
        return ""
    return "".join(ch.lower() for ch in str(value) if ch.isalnum())


def _trigram_tokens(compact_text: str) -> list[str]:
    if not compact_text:
        return []
    if len(compact_text) < 3:
        return [compact_text]
    return [compact_text[i:i + 3] for i in range(len(compact_text) - 2)]


def build_parts_search_terms(sku: str | None, name: str | None) -> list[str]:
    """Trigram tokens stored on each part (indexed as search_terms)."""
    tokens = set()
    for raw in (sku, name):
        tokens.update(_trigram_tokens(compact_search_text(raw)))
    return sorted(tokens)


def build_parts_query(query: str | None) -> dict:
    """
    Mongo filter for the parts search box.
    Short queries fall back to a case-insensitive regex on sku/name.
    """
    normalized = compact_search_text(query)
    if not normalized:
        return {}

    if len(normalized) < 3:
        pattern = re.escape((query or "").strip())
        return {"$or": [
            {"sku": {"$regex": pattern, "$options": "i"}},
            {"name": {"$regex": pattern, "$options": "i"}},
        ]}

    return {"search_terms": {"$all": _trigram_tokens(normalized)}}


def part_matches_query(query: str | None, sku: str | None, name: str | None) -> bool:
    normalized = compact_search_text(query)
    if not normalized:
        return True

    return any(normalized in compact_search_text(raw) for raw in (sku, name))


def filter_parts(parts: list[dict], query: str | None) -> list[dict]:
    return [p for p in parts if part_matches_query(query, p.get("sku"), p.get("name"))]
