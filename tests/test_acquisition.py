import logging

import pytest

from storyforge.acquisition import (
    AcquisitionExecutor,
    AcquisitionFailed,
    run_acquisition,
    update_quality_metrics,
)
from storyforge.config import DEFAULT_CONFIG, build_config
from storyforge.extractors import ExtractionError
from storyforge.models import ExtractedItem
from storyforge.storage import (
    get_last_acquisition_run,
    get_source,
    init_db,
    list_acquisition_errors,
    list_jobs,
    upsert_source,
    upsert_tenant,
)

LOGGER = logging.getLogger("storyforge.tests.acquisition")


class _Scripted:
    """Extractor stub that replays one outcome per call."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def __call__(self, request):
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _item(url, title="Headline", words=200, snippet=False):
    return ExtractedItem(title=title, url=url, word_count=words, is_snippet=snippet)


def _seed_source(conn, **overrides):
    source = {
        "id": "src-1",
        "name": "Example",
        "address": "https://example.com/rss",
        "frequency_minutes": 60,
    }
    source.update(overrides)
    upsert_source(conn, source)
    return get_source(conn, source["id"])


def _set_rate(conn, source_id, rate):
    conn.execute("UPDATE sources SET success_rate = ? WHERE id = ?", (rate, source_id))
    conn.commit()


def test_site_error_advances_without_sleeping(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    source = _seed_source(conn)
    sleeps = []
    primary = _Scripted(ExtractionError("HTTP 404 Not Found for https://example.com/rss"))
    secondary = _Scripted([_item("https://example.com/a")])
    executor = AcquisitionExecutor(
        conn, {"rss": primary, "topic": secondary}, LOGGER, sleep=sleeps.append
    )

    result = executor.execute(source, ["rss", "topic"])

    assert sleeps == []
    assert result.method_used == "topic"
    assert result.attempts_made == 2
    assert result.attempts[0].classification["category"] == "site"
    assert result.attempts[0].classification["retryable"] is False
    errors = list_acquisition_errors(conn, source.id)
    assert len(errors) == 1
    assert errors[0]["method"] == "rss"
    assert errors[0]["severity"] == "high"


def test_attempts_are_capped_across_the_chain(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    source = _seed_source(conn)
    sleeps = []
    failing = {
        name: _Scripted(ExtractionError("HTTP 503 Service Unavailable"))
        for name in ("rss", "topic", "html", "universal")
    }
    executor = AcquisitionExecutor(conn, failing, LOGGER, max_attempts=3, sleep=sleeps.append)

    with pytest.raises(AcquisitionFailed) as excinfo:
        executor.execute(source, ["rss", "topic", "html", "universal"])

    assert excinfo.value.methods_tried == ["rss", "topic", "html"]
    assert len(excinfo.value.attempts) == 3
    assert failing["universal"].calls == 0
    assert sleeps == [1.0, 2.0]


def test_backoff_doubles_up_to_cap(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    source = _seed_source(conn)
    sleeps = []
    names = [f"m{index}" for index in range(6)]
    extractors = {name: _Scripted(ExtractionError("read timeout")) for name in names}
    executor = AcquisitionExecutor(conn, extractors, LOGGER, max_attempts=6, sleep=sleeps.append)

    with pytest.raises(AcquisitionFailed):
        executor.execute(source, names)

    assert sleeps == [1.0, 2.0, 4.0, 8.0, 10.0]


def test_unavailable_method_does_not_use_an_attempt(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    source = _seed_source(conn)
    rss = _Scripted([_item("https://example.com/a")])
    executor = AcquisitionExecutor(conn, {"rss": rss}, LOGGER, sleep=lambda _: None)

    result = executor.execute(source, ["topic", "rss"])

    assert result.method_used == "rss"
    assert result.attempts_made == 1


def test_zero_items_counts_as_content_failure(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    source = _seed_source(conn)
    sleeps = []
    executor = AcquisitionExecutor(
        conn,
        {"rss": _Scripted([]), "html": _Scripted([_item("https://example.com/a")])},
        LOGGER,
        sleep=sleeps.append,
    )

    result = executor.execute(source, ["rss", "html"])

    assert result.method_used == "html"
    assert result.attempts[0].classification["category"] == "content"
    assert sleeps == []


def test_exhaustion_lowers_success_rate_and_keeps_memory(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    _seed_source(conn)
    _set_rate(conn, "src-1", 50.0)
    conn.execute("UPDATE sources SET last_successful_method = 'html' WHERE id = 'src-1'")
    conn.commit()
    source = get_source(conn, "src-1")
    executor = AcquisitionExecutor(
        conn, {"html": _Scripted(ExtractionError("HTTP 403"))}, LOGGER, sleep=lambda _: None
    )

    with pytest.raises(AcquisitionFailed) as excinfo:
        executor.execute(source, ["html"])

    updated = get_source(conn, "src-1")
    assert updated.success_rate == pytest.approx(35.0)
    assert updated.last_successful_method == "html"
    assert excinfo.value.last_classification.category.value == "site"
    assert len(list_acquisition_errors(conn, "src-1")) == 1


@pytest.mark.parametrize(
    "start, expected",
    [(None, 20.0), (50.0, 60.0), (90.0, 95.0), (99.0, 100.0)],
)
def test_success_rate_rises_and_clamps(tmp_path, start, expected):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    _seed_source(conn)
    if start is not None:
        _set_rate(conn, "src-1", start)
    source = get_source(conn, "src-1")
    executor = AcquisitionExecutor(
        conn, {"rss": _Scripted([_item("https://example.com/a")])}, LOGGER
    )

    executor.execute(source, ["rss"])

    updated = get_source(conn, "src-1")
    assert updated.success_rate == pytest.approx(expected)
    assert updated.last_successful_method == "rss"
    assert updated.scraping_method == "rss"
    assert updated.articles_scraped == 1
    assert updated.last_method_execution_ms is not None


def test_failure_rate_never_goes_negative(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    _seed_source(conn)
    _set_rate(conn, "src-1", 5.0)
    source = get_source(conn, "src-1")
    executor = AcquisitionExecutor(
        conn, {"rss": _Scripted(ExtractionError("HTTP 404"))}, LOGGER
    )

    with pytest.raises(AcquisitionFailed):
        executor.execute(source, ["rss"])

    assert get_source(conn, "src-1").success_rate == 0.0


def test_quality_metrics_moving_average():
    first = update_quality_metrics(
        None,
        [_item("https://a", words=100, snippet=True), _item("https://b", words=300)],
        "2026-01-01T00:00:00+00:00",
    )
    assert first["avg_word_count"] == 200.0
    assert first["snippet_rate"] == 50.0
    assert first["total_scrapes_tracked"] == 1

    second = update_quality_metrics(
        first, [_item("https://c", words=400)], "2026-01-02T00:00:00+00:00"
    )
    assert second["avg_word_count"] == pytest.approx(260.0)
    assert second["snippet_rate"] == pytest.approx(35.0)
    assert second["total_scrapes_tracked"] == 2
    assert second["last_updated"] == "2026-01-02T00:00:00+00:00"


def test_run_acquisition_stores_items_and_queues_jobs(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    upsert_tenant(conn, {"id": "tenant-a", "default_slide_type": "short"})
    _seed_source(conn, tenant_id="tenant-a")
    config = build_config(DEFAULT_CONFIG)
    items = [
        _item("https://example.com/a?utm_source=feed"),
        _item("https://example.com/a"),
        _item("https://example.com/b"),
    ]
    executor = AcquisitionExecutor(conn, {"rss": _Scripted(items)}, LOGGER)

    result = run_acquisition(conn, executor, config, LOGGER, source_id="src-1")

    assert result["success"] is True
    assert result["method_used"] == "rss"
    assert result["articles_imported"] == 2
    assert result["jobs_queued"] == 2
    assert result["strategy_info"]["method"] == "rss"
    jobs = list_jobs(conn, status="pending")
    assert len(jobs) == 2
    assert {job.params["slide_type"] for job in jobs} == {"short"}
    assert {job.tenant_id for job in jobs} == {"tenant-a"}
    assert get_last_acquisition_run(conn, "src-1")["items_imported"] == 2

    again = run_acquisition(conn, executor, config, LOGGER, source_id="src-1")
    assert again["success"] is True
    assert again["articles_imported"] == 0
    assert again["jobs_queued"] == 0
    assert len(list_jobs(conn)) == 2


def test_run_acquisition_unknown_source(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    executor = AcquisitionExecutor(conn, {}, LOGGER)
    result = run_acquisition(conn, executor, build_config(DEFAULT_CONFIG), LOGGER, source_id="nope")
    assert result == {"success": False, "error": "source not found: nope"}


def test_run_acquisition_reports_failure(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    _seed_source(conn)
    failing = _Scripted(ExtractionError("HTTP 404"))
    executor = AcquisitionExecutor(
        conn,
        {"rss": failing, "universal": failing, "fallback_html": failing},
        LOGGER,
        sleep=lambda _: None,
    )

    result = run_acquisition(conn, executor, build_config(DEFAULT_CONFIG), LOGGER, source_id="src-1")

    assert result["success"] is False
    assert result["methods_tried"] == ["rss", "universal", "fallback_html"]
    assert "all methods failed" in result["error"]
    assert get_last_acquisition_run(conn, "src-1")["status"] == "failed"


def test_batch_run_defers_sources_past_budget(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    _seed_source(conn, id="src-1")
    _seed_source(conn, id="src-2")
    executor = AcquisitionExecutor(
        conn, {"rss": _Scripted([_item("https://example.com/a")])}, LOGGER
    )
    ticks = iter([0.0, 0.0, 500.0])

    result = run_acquisition(
        conn, executor, build_config(DEFAULT_CONFIG), LOGGER, clock=lambda: next(ticks)
    )

    assert result["processed"] == 1
    assert result["deferred"] == 1
    assert result["results"][0]["source_id"] == "src-1"


def test_site_error_on_numeric_url_does_not_back_off(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    source = _seed_source(conn, address="https://news.example.com/2024/15203/feed")
    sleeps = []
    primary = _Scripted(
        ExtractionError("HTTP 404 Not Found for https://news.example.com/2024/15203/feed")
    )
    secondary = _Scripted(
        ExtractionError("HTTP 403 Forbidden for https://ssl.example.com/2024/15203")
    )
    tertiary = _Scripted([_item("https://news.example.com/2024/15203/story")])
    executor = AcquisitionExecutor(
        conn,
        {"rss": primary, "topic": secondary, "html": tertiary},
        LOGGER,
        sleep=sleeps.append,
    )

    result = executor.execute(source, ["rss", "topic", "html"])

    assert sleeps == []
    assert result.method_used == "html"
    assert [attempt.classification["category"] for attempt in result.attempts[:2]] == [
        "site",
        "site",
    ]
