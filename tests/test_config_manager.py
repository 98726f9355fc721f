# tests/test_config_manager.py

import pytest

from stagesync.config_manager import ConfigManager, EnvConfig


def test_loads_courses_and_assignments(config_file):
    config = ConfigManager(config_file)

    course = config.get_course("cs2100_fa26")
    assert config.list_courses() == ["cs2100_fa26"]
    assert course.class_id == 42
    assert course.time_zone == "America/New_York"
    assert course.get_assignment(301).slug == "project-1"
    assert course.get_assignment("301").min_group_size == 2
    assert course.get_assignment(999) is None
    assert config.get_course("missing") is None


def test_global_settings_with_defaults(config_file):
    config = ConfigManager(config_file)

    assert config.publish_max_workers == 4
    assert config.cache_ttl_seconds == 60
    assert config.enforce_group_size is False


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigManager(tmp_path / "nope.json")


def test_invalid_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    with pytest.raises(ValueError):
        ConfigManager(path)


def test_reload_picks_up_changes(config_file):
    config = ConfigManager(config_file)
    config_file.write_text('{"courses": [{"id": "other", "class_id": 7}], "global_settings": {}}')

    config.reload()

    assert config.list_courses() == ["other"]
    assert config.publish_max_workers == 8


def test_backend_credentials_are_required(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "key")

    with pytest.raises(ValueError):
        EnvConfig.get_backend_credentials()

    monkeypatch.setenv("SUPABASE_URL", "https://course.example.com")
    assert EnvConfig.get_backend_credentials() == ("https://course.example.com", "key")


def test_backend_retry_defaults_to_single_attempt(monkeypatch):
    monkeypatch.delenv("BACKEND_MAX_TRIES", raising=False)

    assert EnvConfig.get_backend_max_tries() == 1


def test_assignment_url(config_file):
    config = ConfigManager(config_file)

    assert config.app_url == "https://course.example.edu"
    assert config.assignment_url(42, 301) == "https://course.example.edu/course/42/assignments/301"
    assert config.get_course("cs2100_fa26").get_assignment(301).due_date == "2026-10-02"


def test_assignment_url_without_app_url(tmp_path):
    path = tmp_path / "config.json"
    path.write_text('{"courses": [], "global_settings": {}}')

    assert ConfigManager(path).assignment_url(42, 301) is None
