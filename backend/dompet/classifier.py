"""Keyword-scoring category classifier."""

from __future__ import annotations

from collections.abc import Iterable

from .domain.entities import Category
from .models import CategoryKind, TransactionKind

FALLBACK_CATEGORY = "Other"


def _kind_matches(category: Category, kind: TransactionKind) -> bool:
    # Expense (and Transfer, classified as Expense) sees every category;
    # Income only sees Income-tagged ones.
    if kind in (TransactionKind.EXPENSE, TransactionKind.TRANSFER):
        return True
    return category.kind == CategoryKind.INCOME


def score(text: str, keywords: Iterable[str]) -> int:
    """Sum of the lengths of every keyword found as a substring of ``text``."""
    lowered = text.lower()
    return sum(len(keyword) for keyword in keywords if keyword and keyword in lowered)


def classify(text: str, kind: TransactionKind, categories: Iterable[Category]) -> str:
    """Return the best-scoring category name for ``text`` or ``"Other"``.

    Longer keywords weigh more. Only a strictly higher score replaces the
    current best, so ties go to the category seen first in ``categories``.
    """
    best_name = FALLBACK_CATEGORY
    best_score = 0
    for category in categories:
        if not _kind_matches(category, kind):
            continue
        category_score = score(text, category.keywords)
        if category_score > best_score:
            best_name = category.name
            best_score = category_score
    return best_name
