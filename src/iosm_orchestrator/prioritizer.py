"""Economic Prioritizer -- ranks backlog items into the goal set of a cycle.

With economic decision enabled, items are ordered by value/cost ratio
(highest first), ties broken by identifier so that identical inputs always
produce the identical ordering.  Items without a usable cost (missing, zero,
negative or non-finite) cannot be ranked by ratio and go last, ordered by
value then identifier.  Items with a non-finite value follow them, ordered
by identifier.  With it disabled the provider's order is kept.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable

from src.iosm_shared.models import BacklogItem, Goal

logger = logging.getLogger(__name__)


def _has_usable_cost(item: BacklogItem) -> bool:
    cost = item.cost
    return cost is not None and math.isfinite(cost) and cost > 0


def value_cost_ratio(item: BacklogItem) -> float | None:
    """Return ``value / cost`` or ``None`` when value or cost is unusable."""
    if not math.isfinite(item.value) or not _has_usable_cost(item):
        return None
    return item.value / item.cost  # type: ignore[operator]


def _economic_key(item: BacklogItem) -> tuple:
    if not math.isfinite(item.value):
        return (2, 0.0, item.item_id)
    ratio = value_cost_ratio(item)
    if ratio is None:
        return (1, -item.value, item.item_id)
    return (0, -ratio, item.item_id)


def _dedupe(items: Iterable[BacklogItem]) -> list[BacklogItem]:
    seen: set[str] = set()
    unique: list[BacklogItem] = []
    for item in items:
        if item.item_id in seen:
            logger.warning("Dropping duplicate backlog item '%s'", item.item_id)
            continue
        seen.add(item.item_id)
        unique.append(item)
    return unique


def prioritize(
    items: Iterable[BacklogItem],
    enabled: bool,
    max_goals: int | None = None,
) -> list[Goal]:
    """Select and rank the goals of a cycle.

    Args:
        items: Backlog items as returned by the provider.
        enabled: Whether value/cost ranking is applied.
        max_goals: Optional cap on the number of goals, applied after ranking.

    Returns:
        Goals with 1-based ranks.
    """
    ordered = _dedupe(items)
    if enabled:
        ordered.sort(key=_economic_key)
    if max_goals is not None:
        ordered = ordered[:max_goals]

    goals = [Goal(item=item, rank=rank) for rank, item in enumerate(ordered, start=1)]
    logger.info(
        "Prioritized %d goals (economic=%s): %s",
        len(goals),
        enabled,
        ", ".join(g.item_id for g in goals),
    )
    return goals
