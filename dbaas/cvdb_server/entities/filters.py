"""
Highlight search predicates.

Each filter field becomes an independent predicate and a highlight matches
when every active predicate accepts it. Both stores call into this module so
search behaves identically regardless of where the data lives.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from .models import Highlight, SearchFilters

Predicate = Callable[[Highlight], bool]


def build_predicates(filters: SearchFilters) -> list[Predicate]:
    """Turn search filters into a list of predicates.

    Empty strings, empty lists and a false only_with_metrics add nothing.
    """
    predicates: list[Predicate] = []

    query = (filters.query or "").strip().lower()
    if query:
        predicates.append(lambda h: query in h.title.lower() or query in h.content.lower())

    if filters.types:
        types = set(filters.types)
        predicates.append(lambda h: h.type in types)

    if filters.domains:
        domains = set(filters.domains)
        predicates.append(lambda h: not domains.isdisjoint(h.domains))

    if filters.skills:
        skills = set(filters.skills)
        predicates.append(lambda h: not skills.isdisjoint(h.skills))

    if filters.only_with_metrics:
        predicates.append(lambda h: len(h.metrics) > 0)

    return predicates


def matches(highlight: Highlight, predicates: list[Predicate]) -> bool:
    return all(p(highlight) for p in predicates)


def apply_filters(highlights: Iterable[Highlight], filters: SearchFilters) -> list[Highlight]:
    """Return the highlights accepted by every active predicate, order preserved."""
    predicates = build_predicates(filters)
    return [h for h in highlights if matches(h, predicates)]
