"""Fetch + parse job executed inside a worker process."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import feedparser
import httpx
from dateutil import parser as dateparser

from ..domain import Article

DEFAULT_USER_AGENT = "feed-relay/0.1 (+https://github.com/feed-relay)"


class FeedFetchError(RuntimeError):
    """The link could not be retrieved."""


class FeedParseError(RuntimeError):
    """The response body is not a usable feed."""


@dataclass(slots=True)
class FeedRequest:
    url: str
    etag: str | None = None
    last_modified: str | None = None
    timeout: float = 15.0
    user_agent: str = DEFAULT_USER_AGENT


@dataclass(slots=True)
class FeedBatch:
    """Parsed articles (newest first, as served) and caching headers."""

    url: str
    articles: list[Article] = field(default_factory=list)
    id_type: str | None = None
    etag: str | None = None
    last_modified: str | None = None
    not_modified: bool = False


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        dt = dateparser.parse(value)
    except (ValueError, OverflowError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class ArticleIDResolver:
    """Pick the identifier scheme that is unique across a whole batch."""

    ID_TYPES = ("guid", "pubdate", "title", "title,pubdate")
    FALLBACK = "guid"

    def __init__(self) -> None:
        self._values: dict[str, list[str | None]] = {id_type: [] for id_type in self.ID_TYPES}

    @staticmethod
    def value_of(properties: dict[str, Any], published: datetime | None, id_type: str) -> str | None:
        parts: list[str] = []
        for key in id_type.split(","):
            if key == "pubdate":
                part = published.isoformat() if published else None
            else:
                raw = properties.get(key)
                part = raw if isinstance(raw, str) and raw else None
            if part is None:
                return None
            parts.append(part)
        return "".join(parts)

    def record(self, properties: dict[str, Any], published: datetime | None) -> None:
        for id_type in self.ID_TYPES:
            self._values[id_type].append(self.value_of(properties, published, id_type))

    def id_type(self) -> str:
        for id_type in self.ID_TYPES:
            values = self._values[id_type]
            if values and all(values) and len(set(values)) == len(values):
                return id_type
        return self.FALLBACK


def _entry_properties(entry: Any) -> dict[str, Any]:
    properties: dict[str, Any] = {
        key: value for key, value in entry.items() if isinstance(value, str)
    }
    if entry.get("id"):
        properties["guid"] = entry["id"]
    if "summary" in properties and "description" not in properties:
        properties["description"] = properties["summary"]
    tags = entry.get("tags") or []
    terms = [tag.get("term") for tag in tags if tag.get("term")]
    if terms:
        properties["tags"] = ", ".join(terms)
    return properties


def parse_feed(url: str, content: bytes | str) -> tuple[list[Article], str | None]:
    """Parse feed content into articles, returning them with the id scheme used."""

    parsed = feedparser.parse(content)
    if parsed.get("bozo") and not parsed.entries:
        raise FeedParseError(f"{url} is not a valid feed: {parsed.get('bozo_exception')}")
    resolver = ArticleIDResolver()
    rows: list[tuple[dict[str, Any], datetime | None]] = []
    for entry in parsed.entries:
        properties = _entry_properties(entry)
        published = _parse_dt(entry.get("published") or entry.get("updated"))
        resolver.record(properties, published)
        rows.append((properties, published))
    if not rows:
        return [], None
    id_type = resolver.id_type()
    articles = [
        Article(
            id=ArticleIDResolver.value_of(properties, published, id_type),
            published_at=published,
            properties=properties,
        )
        for properties, published in rows
    ]
    return articles, id_type


def fetch_feed(request: FeedRequest, transport: httpx.BaseTransport | None = None) -> FeedBatch:
    """Download and parse one feed link. Runs inside a worker process."""

    headers = {"User-Agent": request.user_agent}
    if request.etag:
        headers["If-None-Match"] = request.etag
    if request.last_modified:
        headers["If-Modified-Since"] = request.last_modified
    try:
        with httpx.Client(
            follow_redirects=True, timeout=request.timeout, transport=transport
        ) as client:
            response = client.get(request.url, headers=headers)
    except httpx.HTTPError as exc:
        raise FeedFetchError(f"Request to {request.url} failed: {exc}") from exc

    etag = response.headers.get("ETag")
    last_modified = response.headers.get("Last-Modified")
    if response.status_code == 304:
        return FeedBatch(
            url=request.url,
            etag=etag or request.etag,
            last_modified=last_modified or request.last_modified,
            not_modified=True,
        )
    if response.status_code != 200:
        raise FeedFetchError(f"Bad status code {response.status_code} for {request.url}")

    articles, id_type = parse_feed(request.url, response.content)
    return FeedBatch(
        url=request.url,
        articles=articles,
        id_type=id_type,
        etag=etag,
        last_modified=last_modified,
    )


__all__ = [
    "ArticleIDResolver",
    "FeedBatch",
    "FeedFetchError",
    "FeedParseError",
    "FeedRequest",
    "fetch_feed",
    "parse_feed",
]
