import pytest

from storyforge.config import (
    CONFIG_KEY,
    DEFAULT_CONFIG,
    EXTRACTOR,
    GENERATOR,
    ConfigError,
    bootstrap_runtime_config,
    load_catalog_file,
    load_runtime_config,
    load_settings,
    set_runtime_config,
    validate_runtime_config,
)
from storyforge.db import get_db_path
from storyforge.storage import get_setting, init_db, set_setting


def test_settings_report_every_missing_variable():
    with pytest.raises(ConfigError) as excinfo:
        load_settings({"SF_EXTRACTOR_URL": "http://extractor"}, require=[EXTRACTOR, GENERATOR])
    message = str(excinfo.value)
    assert "SF_EXTRACTOR_URL" not in message
    assert "SF_EXTRACTOR_API_KEY" in message
    assert "SF_GENERATOR_URL" in message
    assert "SF_GENERATOR_API_KEY" in message


def test_settings_without_requirements_allow_missing_collaborators():
    settings = load_settings({"SF_DATA_DIR": "/tmp/sf"})
    assert settings.db_path == "/tmp/sf/storyforge.sqlite3"
    assert settings.generator_url is None


def test_settings_db_path_matches_connection_default(monkeypatch):
    env = {"SF_DB_PATH": "  ", "SF_DATA_DIR": "/tmp/sf"}
    for key, value in env.items():
        monkeypatch.setenv(key, value)

    assert load_settings(env).db_path == "/tmp/sf/storyforge.sqlite3"
    assert load_settings(env).db_path == get_db_path()
    assert load_settings({"SF_DB_PATH": "/var/sf.db"}).db_path == "/var/sf.db"


def test_blank_values_count_as_missing():
    with pytest.raises(ConfigError):
        load_settings(
            {"SF_GENERATOR_URL": "  ", "SF_GENERATOR_API_KEY": "key"}, require=[GENERATOR]
        )


def test_runtime_config_is_bootstrapped_once(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    cfg = bootstrap_runtime_config(conn)
    assert cfg == DEFAULT_CONFIG

    cfg["queue"]["batch_size"] = 9
    set_runtime_config(conn, cfg)
    assert bootstrap_runtime_config(conn)["queue"]["batch_size"] == 9
    assert load_runtime_config(conn).queue.batch_size == 9


def test_invalid_runtime_config_is_rejected(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    bootstrap_runtime_config(conn)
    cfg = get_setting(conn, CONFIG_KEY, None)
    cfg["queue"]["max_attempts"] = "three"
    cfg["queue"]["surprise"] = 1
    errors = validate_runtime_config(cfg)
    assert "config.runtime.queue.max_attempts must be an integer" in errors
    assert "unknown config.runtime.queue.surprise" in errors

    set_setting(conn, CONFIG_KEY, cfg)
    with pytest.raises(ConfigError):
        load_runtime_config(conn)


def test_catalog_file_is_validated(tmp_path):
    path = tmp_path / "catalog.yml"
    path.write_text(
        "tenants:\n"
        "  - id: tenant-a\n"
        "    auto_approve_threshold: 70\n"
        "sources:\n"
        "  - id: src-1\n"
        "    url: https://example.com/rss\n"
        "    tenant_id: tenant-a\n",
        encoding="utf-8",
    )
    catalog = load_catalog_file(str(path))
    assert catalog["tenants"][0]["id"] == "tenant-a"
    assert catalog["sources"][0]["url"] == "https://example.com/rss"

    path.write_text("sources:\n  - id: src-1\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="missing address"):
        load_catalog_file(str(path))

    with pytest.raises(ConfigError, match="catalog not found"):
        load_catalog_file(str(tmp_path / "nope.yml"))
