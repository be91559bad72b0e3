"""Runtime data carried between fetch, dedup, delivery and maintenance."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping


@dataclass(slots=True)
class Article:
    """A parsed feed item.

    ``properties`` is the open bag of values produced by the parser (title,
    description, link, author, ...). Nested mappings are allowed and are
    reachable through underscore-joined names, e.g. ``media_description``.
    """

    id: str | None
    published_at: datetime | None = None
    properties: dict[str, Any] = field(default_factory=dict)

    def get(self, name: str) -> Any:
        if name in self.properties:
            return self.properties[name]
        layers = name.split("_")
        value: Any = self.properties.get(layers[0])
        for layer in layers[1:]:
            if not isinstance(value, Mapping):
                return None
            value = value.get(layer)
            if not value:
                return None
        return value


@dataclass(slots=True)
class ComparisonDoc:
    """Persisted property snapshot of one article previously seen on a link."""

    article_id: str
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class NewArticle:
    article: Article
    subscription_id: str


class MentionType(str, Enum):
    """Kinds of mention targets a subscriber can point to."""

    ROLE = "role"
    USER = "user"

    @classmethod
    def parse(cls, raw: Any) -> "MentionType | None":
        try:
            return cls(raw)
        except ValueError:
            return None


@dataclass(slots=True)
class Subscriber:
    """A role or user to mention when a subscription delivers an article."""

    id: str
    feed_id: str
    type: str
    target_id: str
    filters: dict[str, Any] = field(default_factory=dict)

    @property
    def mention_type(self) -> MentionType | None:
        return MentionType.parse(self.type)

    @property
    def mention(self) -> str:
        if self.mention_type is MentionType.ROLE:
            return f"<@&{self.target_id}>"
        return f"<@{self.target_id}>"


__all__ = ["Article", "ComparisonDoc", "MentionType", "NewArticle", "Subscriber"]
