from storyforge.utils import json_dumps, normalize_url, parse_iso, stable_id_from_url
from storyforge.state import JobStatus


def test_normalize_url_strips_tracking_and_sorts():
    url = "https://Example.com/path?utm_source=news&b=2&a=1"
    assert normalize_url(url) == "https://example.com/path?a=1&b=2"


def test_normalize_url_custom_tracking_list():
    url = "https://example.com/path?utm_source=news&ref=home"
    normalized = normalize_url(url, tracking_params=["ref"])
    assert normalized == "https://example.com/path?utm_source=news"


def test_stable_id_is_deterministic():
    assert stable_id_from_url("https://example.com/a") == stable_id_from_url("https://example.com/a")
    assert stable_id_from_url("https://example.com/a") != stable_id_from_url("https://example.com/b")


def test_parse_iso_handles_zulu():
    assert parse_iso("2026-01-05T10:00:00Z").utcoffset().total_seconds() == 0


def test_json_dumps_handles_enums():
    assert json_dumps({"status": JobStatus.PENDING}) == '{"status": "pending"}'
