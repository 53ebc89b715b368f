from __future__ import annotations

import math

from fleetdesk.utils.forms import to_int


def get_pagination_params(
    args,
    default_per_page: int = 25,
    max_per_page: int = 100,
) -> tuple[int, int]:
    page = to_int(args.get("page"), 1)
    per_page = to_int(args.get("per_page"), default_per_page)

    page = max(page, 1)
    if per_page < 1:
        per_page = default_per_page
    per_page = min(per_page, max_per_page)

    return page, per_page


def paginate_find(collection, query: dict, sort: list[tuple[str, int]], page: int, per_page: int):
    """
    Returns (items, meta). meta is what templates/partials/pagination.html reads.
    Page numbers past the end are clamped to the last page.
    """
    total = collection.count_documents(query)
    pages = max(1, math.ceil(total / per_page))
    page = min(page, pages)

    items = list(
        collection.find(query)
        .sort(sort)
        .skip((page - 1) * per_page)
        .limit(per_page)
    )

    meta = {
        "page": page,
        "per_page": per_page,
        "total": total,
        "pages": pages,
        "has_prev": page > 1,
        "has_next": page < pages,
    }
    return items, meta
