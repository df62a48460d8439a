"""External response shape for a StatsDelta."""

from __future__ import annotations

from typing import Any

from pricepack.core.models import StatsDelta


def report_stats(delta: StatsDelta) -> dict[str, Any]:
    return {
        "total_items": delta.total_items,
        "total_categories": delta.total_categories,
        "total_price": delta.total_price,
    }
