from __future__ import annotations

import os
from dataclasses import dataclass, field

SANDBOX_BASE_URL = "https://sandbox.apis.eagleview.com"
PRODUCTION_BASE_URL = "https://apis.eagleview.com"
DEFAULT_TOKEN_URL = "https://apicenter.eagleview.com/oauth2/v1/token"
PROVIDER_KEY = "eagleview"

CLIENT_ID_ENV = "EAGLEVIEW_CLIENT_ID"
CLIENT_SECRET_ENV = "EAGLEVIEW_CLIENT_SECRET"
ENVIRONMENT_ENV = "EAGLEVIEW_ENV"
DEFAULT_ZOOM_ENV = "EAGLEVIEW_DEFAULT_ZOOM"
REQUEST_TIMEOUT_ENV = "EAGLEVIEW_REQUEST_TIMEOUT"
PIPELINE_TIMEOUT_ENV = "EAGLEVIEW_PIPELINE_TIMEOUT"

# Zoom 19 is roughly 0.3 m per pixel, 20 roughly 0.15 m; both suit property-level views.
DEFAULT_ZOOM = 19
DEFAULT_GRID_SIZE = 4
DEFAULT_TILE_FORMAT = "IMAGE_FORMAT_JPEG"
DEFAULT_TILE_QUALITY = 90
DEFAULT_JPEG_QUALITY = 92
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_PIPELINE_TIMEOUT = 90.0


class ImageryConfigurationError(ValueError):
    """Raised when the imagery pipeline is invoked without provider credentials."""


@dataclass(frozen=True)
class ImageryConfig:
    """Connection and tiling settings for the aerial imagery provider."""

    client_id: str = ""
    client_secret: str = field(default="", repr=False)
    environment: str = "sandbox"
    token_url: str = DEFAULT_TOKEN_URL
    default_zoom: int = DEFAULT_ZOOM
    default_grid_size: int = DEFAULT_GRID_SIZE
    tile_format: str = DEFAULT_TILE_FORMAT
    tile_quality: int = DEFAULT_TILE_QUALITY
    jpeg_quality: int = DEFAULT_JPEG_QUALITY
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    pipeline_timeout: float = DEFAULT_PIPELINE_TIMEOUT

    @property
    def base_url(self) -> str:
        if self.environment == "production":
            return PRODUCTION_BASE_URL
        return SANDBOX_BASE_URL

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def require_credentials(self) -> None:
        if not self.is_configured:
            raise ImageryConfigurationError(
                "Aerial imagery requires the "
                f"{CLIENT_ID_ENV} and {CLIENT_SECRET_ENV} environment variables to be set."
            )

    @classmethod
    def from_env(cls) -> "ImageryConfig":
        environment = os.getenv(ENVIRONMENT_ENV, "").strip().lower()
        return cls(
            client_id=os.getenv(CLIENT_ID_ENV, "").strip(),
            client_secret=os.getenv(CLIENT_SECRET_ENV, "").strip(),
            environment="production" if environment == "production" else "sandbox",
            default_zoom=int(_env_number(DEFAULT_ZOOM_ENV, DEFAULT_ZOOM)),
            request_timeout=_env_number(REQUEST_TIMEOUT_ENV, DEFAULT_REQUEST_TIMEOUT),
            pipeline_timeout=_env_number(PIPELINE_TIMEOUT_ENV, DEFAULT_PIPELINE_TIMEOUT),
        )


def _env_number(name: str, default: float) -> float:
    raw_value = os.getenv(name, "").strip()
    if not raw_value:
        return default
    try:
        value = float(raw_value)
    except ValueError:
        return default
    if value <= 0:
        return default
    return value


def is_configured(config: ImageryConfig | None = None) -> bool:
    """Return whether provider credentials are available."""

    if config is None:
        config = ImageryConfig.from_env()
    return config.is_configured
