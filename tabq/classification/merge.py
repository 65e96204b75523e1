"""
Precedence between a fresh verdict and what is already known for an address.

1. A fresh user correction always wins.
2. An existing user correction is never overwritten by an automatic verdict.
3. Otherwise the higher tier wins; ties keep the fresh provenance.
"""

from __future__ import annotations

from tabq.storage.models import Category, Provenance


def resolve(
    fresh_category: Category,
    fresh_provenance: Provenance | None,
    known_category: Category | None,
    known_provenance: Provenance | None,
) -> tuple[Category, Provenance | None]:
    """
    Final (category, provenance) for an address.

    Examples:
        >>> resolve(Category.CAN_CLOSE, Provenance.RULE, Category.IMPORTANT, Provenance.REMOTE)
        (<Category.IMPORTANT: 3>, <Provenance.REMOTE: 'remote'>)

        >>> resolve(Category.CAN_CLOSE, Provenance.USER_CORRECTION, Category.IMPORTANT, None)
        (<Category.CAN_CLOSE: 1>, <Provenance.USER_CORRECTION: 'user_correction'>)
    """
    if fresh_provenance == Provenance.USER_CORRECTION:
        return fresh_category, fresh_provenance
    if known_category is None:
        return fresh_category, fresh_provenance
    if known_provenance == Provenance.USER_CORRECTION:
        return known_category, known_provenance
    if known_category > fresh_category:
        return known_category, known_provenance or Provenance.PERSISTED
    return fresh_category, fresh_provenance


def first_verdict_wins(*stages: dict) -> dict:
    """Union stage outputs in order; an earlier stage's entry is kept."""
    merged: dict = {}
    for stage in stages:
        for key, value in stage.items():
            merged.setdefault(key, value)
    return merged
