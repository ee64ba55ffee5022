import pytest
from fastapi.testclient import TestClient

from storyforge.api import app, get_extractors, get_generator
from storyforge.config import load_settings
from storyforge.extractors import ExtractionError
from storyforge.generator import GenerationResult
from storyforge.models import ExtractedItem
from storyforge.storage import init_db, upsert_source, upsert_tenant


def _fake_extractor(request):
    return [ExtractedItem(title="Fresh", url=f"{request.address}/fresh", word_count=250)]


def _broken_extractor(request):
    raise ExtractionError("HTTP 404 Not Found")


def _fake_generator(request):
    return GenerationResult(story_id=f"story-{request.content_item_id}", slide_count=5, quality_score=90.0)


@pytest.fixture()
def db_path(tmp_path, monkeypatch):
    path = str(tmp_path / "state.sqlite3")
    monkeypatch.setenv("SF_DB_PATH", path)
    conn = init_db(path)
    upsert_tenant(conn, {"id": "tenant-a", "auto_simplify_enabled": True})
    upsert_source(
        conn,
        {"id": "src-1", "address": "https://example.com/rss", "tenant_id": "tenant-a"},
    )
    conn.close()
    app.state.settings = load_settings()
    yield path
    app.state.settings = None
    app.dependency_overrides.clear()


def test_health_endpoint(db_path):
    client = TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert "version" in payload


def test_acquisition_then_queue_run(db_path):
    app.dependency_overrides[get_extractors] = lambda: {"rss": _fake_extractor}
    app.dependency_overrides[get_generator] = lambda: _fake_generator
    client = TestClient(app)

    acquired = client.post("/acquisition/run", json={"source_id": "src-1"})
    assert acquired.status_code == 200
    body = acquired.json()
    assert body["success"] is True
    assert body["articles_imported"] == 1
    assert body["jobs_queued"] == 1
    assert body["method_used"] == "rss"

    jobs = client.get("/jobs").json()
    assert jobs["counts"] == {"pending": 1}

    ran = client.post("/queue/run", json={"limit": 5})
    assert ran.status_code == 200
    result = ran.json()
    assert result["success"] is True
    assert result["processed"] == 1
    assert result["results"][0]["slide_count"] == 5

    sources = client.get("/sources").json()
    assert sources[0]["last_successful_method"] == "rss"
    assert sources[0]["last_run"]["status"] == "ok"


def test_acquisition_unknown_source_is_404(db_path):
    app.dependency_overrides[get_extractors] = lambda: {"rss": _fake_extractor}
    client = TestClient(app)
    response = client.post("/acquisition/run", json={"source_id": "ghost"})
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_acquisition_failure_is_reported_in_body(db_path):
    app.dependency_overrides[get_extractors] = lambda: {
        "rss": _broken_extractor,
        "universal": _broken_extractor,
        "fallback_html": _broken_extractor,
    }
    client = TestClient(app)
    response = client.post("/acquisition/run", json={"source_id": "src-1"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["methods_tried"] == ["rss", "universal", "fallback_html"]
    assert body["strategy_info"]["method"] == "rss"


def test_queue_run_requires_generator(db_path):
    client = TestClient(app)
    response = client.post("/queue/run")
    assert response.status_code == 500
    assert response.json()["detail"] == "generator is not configured"


def test_queue_run_rejects_out_of_range_limit(db_path):
    app.dependency_overrides[get_generator] = lambda: _fake_generator
    client = TestClient(app)
    assert client.post("/queue/run", json={"limit": 0}).status_code == 422


def test_enqueue_new_endpoint(db_path):
    client = TestClient(app)
    response = client.post("/queue/enqueue-new", json={})
    assert response.status_code == 200
    assert response.json()["queued"] == 0

    missing = client.post("/queue/enqueue-new", json={"tenant_id": "ghost"})
    assert missing.status_code == 404


def test_requests_reuse_the_settings_loaded_at_startup(db_path, tmp_path, monkeypatch):
    monkeypatch.setenv("SF_DB_PATH", str(tmp_path / "elsewhere.sqlite3"))
    client = TestClient(app)

    sources = client.get("/sources").json()

    assert [source["id"] for source in sources] == ["src-1"]
    assert app.state.settings.db_path == db_path
    assert not (tmp_path / "elsewhere.sqlite3").exists()


def test_settings_are_loaded_once_when_startup_did_not_run(db_path, monkeypatch):
    app.state.settings = None
    calls = []

    def _counting_load_settings():
        calls.append(1)
        return load_settings()

    monkeypatch.setattr("storyforge.api.load_settings", _counting_load_settings)
    client = TestClient(app)

    client.get("/sources")
    client.get("/jobs")

    assert len(calls) == 1
    assert app.state.settings.db_path == db_path
