"""Comparison references built from a link's persisted article history."""

from __future__ import annotations

from typing import Iterable

from ..domain import ComparisonDoc

ComparisonReferences = dict[str, set[str]]


def build_comparison_references(docs: Iterable[ComparisonDoc]) -> ComparisonReferences:
    """Map each property name to every distinct string value recorded for it.

    Values that are not strings are skipped.
    """

    references: ComparisonReferences = {}
    for doc in docs:
        for name, value in doc.properties.items():
            if not isinstance(value, str):
                continue
            references.setdefault(name, set()).add(value)
    return references


def history_ids(docs: Iterable[ComparisonDoc]) -> set[str]:
    return {doc.article_id for doc in docs if doc.article_id}


__all__ = ["ComparisonReferences", "build_comparison_references", "history_ids"]
