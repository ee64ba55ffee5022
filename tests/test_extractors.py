import pytest

from storyforge.config import DEFAULT_CONFIG, Settings, build_config
from storyforge.extractors import ExtractionError, build_default_extractors
from storyforge.extractors.feed import FeedExtractor, discover_feed_url
from storyforge.extractors.html import FallbackHtmlExtractor, HtmlExtractor, UniversalExtractor
from storyforge.extractors.remote import RemoteExtractor
from storyforge.models import ExtractionRequest

RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example</title>
    <link>https://example.com/</link>
    <item>
      <title>First story</title>
      <link>https://example.com/first</link>
      <description>&lt;p&gt;Short summary of the first story.&lt;/p&gt;</description>
      <pubDate>Mon, 05 Jan 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second story</title>
      <link>https://example.com/second</link>
    </item>
    <item>
      <title>Second story again</title>
      <link>https://example.com/second</link>
    </item>
  </channel>
</rss>
"""

PAGE = """<html><head>
<link rel="alternate" type="application/rss+xml" href="/feed.xml">
<script type="application/ld+json">
{"@context": "https://schema.org", "@graph": [
  {"@type": "WebSite", "name": "Example"},
  {"@type": "NewsArticle", "headline": "Structured headline",
   "url": "/news/structured", "articleBody": "Body text here",
   "datePublished": "2026-01-05T10:00:00Z"}
]}
</script>
</head><body>
<article><h2><a href="/news/block">Article block headline</a></h2>
<time datetime="2026-01-04">Jan 4</time><p>Some words.</p></article>
<article><p>No heading here</p></article>
</body></html>
"""

HEADLINES = """<html><body>
<nav><h2><a href="/nav">Navigation headline that is long enough</a></h2></nav>
<h2><a href="/story/one">A same-site headline long enough to keep</a></h2>
<h3><a href="/tiny">Too short</a></h3>
<h2><a href="https://other.example.org/x">An off-site headline that is long enough</a></h2>
</body></html>
"""


def _request(address="https://example.com/"):
    return ExtractionRequest(address=address, source_id="src-1")


def test_feed_parse_builds_items():
    items = FeedExtractor("ua", 10).parse(RSS)
    assert [item.url for item in items] == ["https://example.com/first", "https://example.com/second"]
    first = items[0]
    assert first.body == "Short summary of the first story."
    assert first.word_count == 6
    assert first.is_snippet is True
    assert first.published_at.startswith("2026-01-05T10:00:00")


def test_feed_parse_respects_max_items():
    assert len(FeedExtractor("ua", 1).parse(RSS)) == 1


def test_feed_autodiscovery_follows_alternate_link(monkeypatch):
    fetched = []

    def fake_fetch(url, *, timeout_seconds, user_agent):
        fetched.append(url)
        return RSS if url.endswith("/feed.xml") else PAGE.encode("utf-8")

    monkeypatch.setattr("storyforge.extractors.feed.fetch_url", fake_fetch)

    items = FeedExtractor("ua", 10)(_request())

    assert fetched == ["https://example.com/", "https://example.com/feed.xml"]
    assert len(items) == 2


def test_feed_without_entries_or_alternate_fails(monkeypatch):
    monkeypatch.setattr(
        "storyforge.extractors.feed.fetch_url",
        lambda url, **_: b"<html><body>nothing</body></html>",
    )
    with pytest.raises(ExtractionError, match="no articles"):
        FeedExtractor("ua", 10)(_request())


def test_discover_feed_url_ignores_other_links():
    html = '<link rel="stylesheet" href="/a.css"><link rel="alternate" hreflang="fr" href="/fr">'
    assert discover_feed_url(html, "https://example.com/") is None


def test_html_parse_reads_json_ld_and_article_blocks():
    items = HtmlExtractor("ua", 10).parse(PAGE, "https://example.com/")
    assert [item.url for item in items] == [
        "https://example.com/news/structured",
        "https://example.com/news/block",
    ]
    assert items[0].title == "Structured headline"
    assert items[0].body == "Body text here"
    assert items[1].published_at == "2026-01-04"


def test_html_extractor_raises_when_empty(monkeypatch):
    monkeypatch.setattr("storyforge.extractors.html.fetch_url", lambda url, **_: b"<html></html>")
    with pytest.raises(ExtractionError, match="no content extracted"):
        HtmlExtractor("ua", 10)(_request())


def test_fallback_keeps_long_same_site_headlines():
    items = FallbackHtmlExtractor("ua", 10).parse(HEADLINES, "https://example.com/")
    assert [item.url for item in items] == ["https://example.com/story/one"]
    assert items[0].body is None
    assert items[0].is_snippet is True


def test_universal_falls_through_to_html(monkeypatch):
    page = PAGE.replace('<link rel="alternate" type="application/rss+xml" href="/feed.xml">', "")
    monkeypatch.setattr("storyforge.extractors.feed.fetch_url", lambda url, **_: page.encode())
    monkeypatch.setattr("storyforge.extractors.html.fetch_url", lambda url, **_: page.encode())

    items = UniversalExtractor("ua", 10)(_request())

    assert len(items) == 2


def test_remote_extractor_posts_to_method_endpoint(monkeypatch):
    calls = []

    def fake_post(url, payload, *, api_key, timeout_seconds, error_cls):
        calls.append((url, payload, api_key, timeout_seconds))
        return {
            "success": True,
            "articles": [{"title": "Remote", "url": "https://example.com/r", "body": "a b c d"}],
        }

    monkeypatch.setattr("storyforge.extractors.remote.post_json", fake_post)
    extractor = RemoteExtractor("http://extractor/", "secret", "ai_recovery", 5)

    items = extractor(_request())

    url, payload, api_key, timeout = calls[0]
    assert url == "http://extractor/ai_recovery"
    assert payload["max_items"] == 5
    assert api_key == "secret"
    assert timeout == 60
    assert items[0].word_count == 4


def test_remote_extractor_surfaces_service_errors(monkeypatch):
    monkeypatch.setattr(
        "storyforge.extractors.remote.post_json",
        lambda *args, **kwargs: {"success": False, "error": "HTTP 403 upstream"},
    )
    with pytest.raises(ExtractionError, match="403"):
        RemoteExtractor("http://extractor", "secret", "topic", 5)(_request())


def test_remote_extractor_rejects_malformed_articles(monkeypatch):
    monkeypatch.setattr(
        "storyforge.extractors.remote.post_json",
        lambda *args, **kwargs: {"success": True, "articles": [{"title": "x"}]},
    )
    with pytest.raises(ExtractionError, match="invalid_content"):
        RemoteExtractor("http://extractor", "secret", "topic", 5)(_request())


def test_default_registry_adds_remote_methods_when_configured():
    config = build_config(DEFAULT_CONFIG)
    local = build_default_extractors(Settings("db", None, None, None, None), config)
    assert set(local) == {"rss", "html", "universal", "fallback_html"}

    remote = build_default_extractors(
        Settings("db", "http://extractor", "key", None, None), config
    )
    assert {"topic", "ai_recovery"} <= set(remote)
