from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from feed_relay.engine import FeedFetchError, FeedParseError, FeedRequest, fetch_feed
from feed_relay.engine.fetch_job import ArticleIDResolver, parse_feed

RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example</title>
    <link>https://example.com</link>
    <description>Example feed</description>
    <item>
      <title>Second post</title>
      <link>https://example.com/2</link>
      <guid>post-2</guid>
      <description>Body two</description>
      <category>news</category>
      <pubDate>Mon, 20 May 2024 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>First post</title>
      <link>https://example.com/1</link>
      <guid>post-1</guid>
      <description>Body one</description>
      <pubDate>Sun, 19 May 2024 10:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>
"""

RSS_WITHOUT_GUIDS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>No guids</title>
    <item><title>Alpha</title><pubDate>Mon, 20 May 2024 10:00:00 GMT</pubDate></item>
    <item><title>Beta</title><pubDate>Mon, 20 May 2024 10:00:00 GMT</pubDate></item>
  </channel>
</rss>
"""


def test_parse_feed_extracts_articles() -> None:
    articles, id_type = parse_feed("https://example.com/rss", RSS)

    assert id_type == "guid"
    assert [article.id for article in articles] == ["post-2", "post-1"]
    first = articles[0]
    assert first.get("title") == "Second post"
    assert first.get("link") == "https://example.com/2"
    assert first.get("description") == "Body two"
    assert first.get("tags") == "news"
    assert first.published_at == datetime(2024, 5, 20, 10, 0, tzinfo=timezone.utc)


def test_parse_feed_falls_back_to_title_ids() -> None:
    articles, id_type = parse_feed("https://example.com/rss", RSS_WITHOUT_GUIDS)

    assert id_type == "title"
    assert [article.id for article in articles] == ["Alpha", "Beta"]


def test_parse_feed_rejects_garbage() -> None:
    with pytest.raises(FeedParseError):
        parse_feed("https://example.com/rss", b"not a feed at all")


def test_id_resolver_prefers_unique_scheme() -> None:
    resolver = ArticleIDResolver()
    published = datetime(2024, 5, 20, tzinfo=timezone.utc)
    resolver.record({"guid": "same", "title": "A"}, published)
    resolver.record({"guid": "same", "title": "A"}, datetime(2024, 5, 21, tzinfo=timezone.utc))

    assert resolver.id_type() == "pubdate"


def test_id_resolver_falls_back_to_guid() -> None:
    resolver = ArticleIDResolver()
    resolver.record({"title": "A"}, None)
    resolver.record({"title": "A"}, None)

    assert resolver.id_type() == "guid"
    assert ArticleIDResolver.value_of({"title": "A"}, None, "guid") is None


def test_fetch_feed_returns_batch_with_caching_headers() -> None:
    seen: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.headers)
        return httpx.Response(
            200,
            content=RSS,
            headers={"ETag": '"v2"', "Last-Modified": "Mon, 20 May 2024 10:00:00 GMT"},
        )

    request = FeedRequest(url="https://example.com/rss", etag='"v1"')
    batch = fetch_feed(request, transport=httpx.MockTransport(handler))

    assert seen["if-none-match"] == '"v1"'
    assert batch.not_modified is False
    assert batch.etag == '"v2"'
    assert batch.last_modified == "Mon, 20 May 2024 10:00:00 GMT"
    assert len(batch.articles) == 2


def test_fetch_feed_not_modified_keeps_previous_headers() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(304))
    request = FeedRequest(url="https://example.com/rss", etag='"v1"', last_modified="yesterday")

    batch = fetch_feed(request, transport=transport)

    assert batch.not_modified is True
    assert batch.articles == []
    assert batch.etag == '"v1"'
    assert batch.last_modified == "yesterday"


def test_fetch_feed_bad_status() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(503))

    with pytest.raises(FeedFetchError, match="503"):
        fetch_feed(FeedRequest(url="https://example.com/rss"), transport=transport)


def test_fetch_feed_wraps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(FeedFetchError):
        fetch_feed(FeedRequest(url="https://example.com/rss"), transport=httpx.MockTransport(handler))
