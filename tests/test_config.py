import pytest

from aerial_imagery.config import (
    DEFAULT_REQUEST_TIMEOUT,
    PRODUCTION_BASE_URL,
    SANDBOX_BASE_URL,
    ImageryConfig,
    ImageryConfigurationError,
    is_configured,
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "EAGLEVIEW_CLIENT_ID",
        "EAGLEVIEW_CLIENT_SECRET",
        "EAGLEVIEW_ENV",
        "EAGLEVIEW_DEFAULT_ZOOM",
        "EAGLEVIEW_REQUEST_TIMEOUT",
        "EAGLEVIEW_PIPELINE_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_from_env_reads_trimmed_credentials(clean_env):
    clean_env.setenv("EAGLEVIEW_CLIENT_ID", " client \n")
    clean_env.setenv("EAGLEVIEW_CLIENT_SECRET", "secret")

    config = ImageryConfig.from_env()

    assert config.client_id == "client"
    assert config.client_secret == "secret"
    assert config.base_url == SANDBOX_BASE_URL
    assert config.default_zoom == 19
    assert is_configured(config)
    assert is_configured()


def test_production_environment_selects_production_url(clean_env):
    clean_env.setenv("EAGLEVIEW_ENV", "production")

    assert ImageryConfig.from_env().base_url == PRODUCTION_BASE_URL


def test_numeric_overrides_fall_back_when_invalid(clean_env):
    clean_env.setenv("EAGLEVIEW_DEFAULT_ZOOM", "20")
    clean_env.setenv("EAGLEVIEW_REQUEST_TIMEOUT", "soon")

    config = ImageryConfig.from_env()

    assert config.default_zoom == 20
    assert config.request_timeout == DEFAULT_REQUEST_TIMEOUT


def test_missing_credentials_are_reported(clean_env):
    config = ImageryConfig.from_env()

    assert not config.is_configured
    assert not is_configured()
    with pytest.raises(ImageryConfigurationError):
        config.require_credentials()


def test_secret_is_not_in_repr():
    assert "hunter2" not in repr(ImageryConfig(client_id="id", client_secret="hunter2"))
