"""Out-of-office classifier.

Decision rule, first match wins:
1. status == cancelled      (kept so the reconciler can remove the mirror)
2. transparency == transparent
3. keyword (case-insensitive substring) in summary or description
4. eventType == outOfOffice
The classifier is pure and total; missing fields count as empty strings.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from ..models import SourceEvent

__all__ = ["DEFAULT_OOO_KEYWORDS", "OOOClassifier", "is_ooo"]

log = logging.getLogger(__name__)

DEFAULT_OOO_KEYWORDS: tuple[str, ...] = (
    "out of office",
    "ooo",
    "vacation",
    "leave",
    "away",
    "holiday",
    "time off",
    "pto",
)


def _normalize_keywords(keywords: Iterable[str]) -> tuple[str, ...]:
    return tuple(k.strip().lower() for k in keywords if k and k.strip())


def _matched_rule(event: SourceEvent, keywords: Sequence[str]) -> str | None:
    if (event.status or "").lower() == "cancelled":
        return "cancelled"
    if (event.transparency or "").lower() == "transparent":
        return "transparent"
    title = (event.summary or "").lower()
    description = (event.description or "").lower()
    for keyword in keywords:
        if keyword in title or keyword in description:
            return f"keyword:{keyword}"
    if (event.event_type or "").lower() == "outofoffice":
        return "event-type"
    return None


def is_ooo(event: SourceEvent, keywords: Iterable[str] = DEFAULT_OOO_KEYWORDS) -> bool:
    """Return True when the event denotes an absence (or a cancellation)."""
    return _matched_rule(event, _normalize_keywords(keywords)) is not None


class OOOClassifier:
    def __init__(self, keywords: Iterable[str] = DEFAULT_OOO_KEYWORDS) -> None:
        self.keywords = _normalize_keywords(keywords)

    def matched_rule(self, event: SourceEvent) -> str | None:
        return _matched_rule(event, self.keywords)

    def is_ooo(self, event: SourceEvent) -> bool:
        return self.matched_rule(event) is not None

    def filter(self, events: Iterable[SourceEvent]) -> list[SourceEvent]:
        """Keep OOO events, logging which rule fired for each."""
        seen = 0
        out: list[SourceEvent] = []
        for ev in events:
            seen += 1
            rule = self.matched_rule(ev)
            if rule is None:
                continue
            log.debug("ooo-detected %r rule=%s", ev.summary, rule)
            out.append(ev)
        log.info("Detected %d OOO events out of %d total events", len(out), seen)
        return out
