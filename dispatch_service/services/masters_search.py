from __future__ import annotations

import re
from typing import Sequence

from rapidfuzz import fuzz, process

from dispatch_service.core.dto import Master
from dispatch_service.services.order_status import check_capacity

__all__ = ["MASTER_MIN_SCORE", "search_masters", "available_first"]

MASTER_MIN_SCORE = 70
_NON_DIGITS_RE = re.compile(r"\D")


def available_first(masters: Sequence[Master]) -> list[Master]:
    """Masters with free capacity first, then by name."""
    return sorted(masters, key=lambda item: (not check_capacity(item), item.full_name.lower()))


def search_masters(masters: Sequence[Master], query: str, *, limit: int = 20) -> list[Master]:
    """Rank masters for the assign picker by name (fuzzy) and phone digits."""
    normalized = (query or "").strip().lower()
    if not normalized:
        return available_first(masters)[:limit]

    scores: dict[str, float] = {}
    digits = _NON_DIGITS_RE.sub("", normalized)
    if digits:
        for master in masters:
            if digits in _NON_DIGITS_RE.sub("", master.phone or ""):
                scores[master.id] = 100.0

    names = {master.id: master.full_name for master in masters if master.full_name}
    if names:
        matches = process.extract(
            normalized,
            names,
            scorer=fuzz.WRatio,
            processor=lambda s: s.lower(),
            limit=len(names),
        )
        for name, score, master_id in matches:
            if score is None or score < MASTER_MIN_SCORE:
                continue
            bonus = 1.0 if normalized in name.lower() else 0.0
            scores[master_id] = max(scores.get(master_id, 0.0), float(score) + bonus)

    by_id = {master.id: master for master in masters}
    ranked = sorted(
        scores.items(),
        key=lambda item: (-item[1], not check_capacity(by_id[item[0]]), by_id[item[0]].full_name.lower()),
    )
    return [by_id[master_id] for master_id, _ in ranked[:limit]]
