import pytest
from pydantic import ValidationError

from leaderboard_core.settings import Settings, get_settings


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    # keep a developer's .env out of the picture
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults_without_environment():
    settings = Settings()
    assert settings.fetch_timeout == 10
    assert settings.queue_maxsize == 0
    assert settings.lock_scoring_mode is True
    assert settings.default_category == "All"
    assert settings.default_gender == "All"
    assert settings.seed_sample_data is False
    assert settings.log_level is None


def test_environment_overrides_are_read(monkeypatch):
    monkeypatch.setenv("LEADERBOARD_FETCH_TIMEOUT", "2.5")
    monkeypatch.setenv("LEADERBOARD_QUEUE_MAXSIZE", "64")
    monkeypatch.setenv("LEADERBOARD_LOCK_SCORING_MODE", "false")
    monkeypatch.setenv("LEADERBOARD_DEFAULT_CATEGORY", "Scaled")
    monkeypatch.setenv("LEADERBOARD_SEED_SAMPLE_DATA", "1")
    monkeypatch.setenv("LEADERBOARD_LOG_LEVEL", "warning")

    settings = get_settings()

    assert settings.fetch_timeout == 2.5
    assert settings.queue_maxsize == 64
    assert settings.lock_scoring_mode is False
    assert settings.default_category == "Scaled"
    assert settings.seed_sample_data is True
    assert settings.log_level == "WARNING"
    assert get_settings() is settings


@pytest.mark.parametrize(
    "name,value",
    [
        ("LEADERBOARD_FETCH_TIMEOUT", "abc"),
        ("LEADERBOARD_FETCH_TIMEOUT", "-1"),
        ("LEADERBOARD_LOCK_SCORING_MODE", "flase"),
        ("LEADERBOARD_QUEUE_MAXSIZE", "-5"),
        ("LEADERBOARD_LOG_LEVEL", "chatty"),
    ],
)
def test_malformed_environment_values_fail_loudly(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValidationError):
        Settings()


def test_explicit_arguments_win_over_environment(monkeypatch):
    monkeypatch.setenv("LEADERBOARD_SEED_SAMPLE_DATA", "true")
    assert Settings(seed_sample_data=False).seed_sample_data is False
