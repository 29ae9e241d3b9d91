import pytest

from tunecraft.core.config import get_settings


def _set_minimum_production_env(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "prod-secret-key-with-enough-entropy")
    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg2://app:password@db:5432/tunecraft")
    monkeypatch.setenv("GENERATION_PROVIDER", "suno")
    monkeypatch.setenv("PROVIDER_API_KEY", "provider-key-prod")
    monkeypatch.setenv("PROVIDER_CALLBACK_URL", "https://api.tunecraft.app/webhooks/provider")
    monkeypatch.setenv("APP_PUBLIC_BASE_URL", "https://api.tunecraft.app")


def test_requires_secret_key_in_production(monkeypatch) -> None:
    _set_minimum_production_env(monkeypatch)
    monkeypatch.setenv("SECRET_KEY", "")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="SECRET_KEY"):
        get_settings()

    get_settings.cache_clear()


def test_production_settings_load_when_complete(monkeypatch) -> None:
    _set_minimum_production_env(monkeypatch)
    get_settings.cache_clear()

    settings = get_settings()
    assert settings.is_production is True
    assert settings.generation_provider == "suno"

    get_settings.cache_clear()


def test_mock_provider_is_rejected_in_production(monkeypatch) -> None:
    _set_minimum_production_env(monkeypatch)
    monkeypatch.setenv("GENERATION_PROVIDER", "mock")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="GENERATION_PROVIDER"):
        get_settings()

    get_settings.cache_clear()


def test_loads_environment_values(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./data/tunecraft_test.sqlite")
    monkeypatch.setenv("SIGNUP_CREDITS", "50")
    monkeypatch.setenv("DEFAULT_MODEL_VERSION", "v4.5")
    get_settings.cache_clear()

    settings = get_settings()
    assert settings.env == "development"
    assert settings.secret_key == "test-secret"
    assert settings.database_url.endswith("tunecraft_test.sqlite")
    assert settings.signup_credits == 50
    assert settings.default_model_version == "v4.5"

    get_settings.cache_clear()


def test_rejects_unknown_provider(monkeypatch) -> None:
    monkeypatch.setenv("GENERATION_PROVIDER", "udio")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="GENERATION_PROVIDER"):
        get_settings()

    get_settings.cache_clear()


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("SENTRY_TRACES_SAMPLE_RATE", "1.2"),
        ("PROVIDER_TIMEOUT_SECONDS", "0"),
        ("ASSET_DOWNLOAD_TIMEOUT_SECONDS", "0"),
        ("SIGNUP_CREDITS", "-1"),
        ("LOGIN_MAX_ATTEMPTS", "0"),
        ("LOGIN_LOCK_MINUTES", "0"),
    ],
)
def test_rejects_invalid_limits(monkeypatch, name, value) -> None:
    monkeypatch.setenv(name, value)
    get_settings.cache_clear()

    with pytest.raises(ValueError, match=name):
        get_settings()

    get_settings.cache_clear()
