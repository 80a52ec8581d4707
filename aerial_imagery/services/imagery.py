from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict

import httpx

from ..config import PROVIDER_KEY, ImageryConfig, ImageryConfigurationError
from .auth import AuthenticationError, TokenManager, get_token_manager
from .discovery import DiscoveryResult, discover_ortho_image
from .fetcher import fetch_grid, validate_grid_size
from .tiles import coverage_meters, validate_zoom

logger = logging.getLogger(__name__)

OUTPUT_MIME_TYPE = "image/jpeg"


@dataclass(frozen=True)
class PropertyAerialImage:
    """Stitched aerial image of a property plus the metadata describing it."""

    image_data: bytes
    mime_type: str
    source: str
    image_urn: str
    capture_date: str
    gsd_meters: float
    zoom_level: int
    tile_count: int
    coverage_meters: int
    measured: bool = True

    @property
    def image_base64(self) -> str:
        return base64.b64encode(self.image_data).decode("ascii")

    def as_inline_data(self) -> Dict[str, str]:
        """Return the image in the ``{imageData, mimeType}`` form used for prompt embedding."""

        return {"imageData": self.image_base64, "mimeType": self.mime_type}

    def metadata(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "imageUrn": self.image_urn,
            "captureDate": self.capture_date,
            "gsdMeters": self.gsd_meters,
            "zoomLevel": self.zoom_level,
            "tileCount": self.tile_count,
            "coverageMeters": self.coverage_meters,
            "measured": self.measured,
        }


def _resolve(
    config: ImageryConfig | None, token_manager: TokenManager | None
) -> tuple[ImageryConfig, TokenManager]:
    if config is None:
        config = token_manager.config if token_manager is not None else ImageryConfig.from_env()
    config.require_credentials()
    if token_manager is None:
        token_manager = get_token_manager(config)
    return config, token_manager


def _http_client(config: ImageryConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(config.request_timeout))


async def _acquire_image(
    client: httpx.AsyncClient,
    token_manager: TokenManager,
    lat: float,
    lng: float,
    zoom: int,
    grid_size: int,
    cancel_event: asyncio.Event | None,
) -> PropertyAerialImage | None:
    discovery: DiscoveryResult | None = await discover_ortho_image(client, token_manager, lat, lng)
    if discovery is None:
        return None

    effective_zoom = min(zoom, discovery.max_zoom)
    stitched = await fetch_grid(
        client,
        token_manager,
        discovery.image_urn,
        lat,
        lng,
        effective_zoom,
        grid_size,
        cancel_event=cancel_event,
    )
    if stitched is None:
        return None

    image = PropertyAerialImage(
        image_data=stitched.data,
        mime_type=OUTPUT_MIME_TYPE,
        source=PROVIDER_KEY,
        image_urn=discovery.image_urn,
        capture_date=discovery.capture_date,
        gsd_meters=discovery.gsd_meters,
        zoom_level=effective_zoom,
        tile_count=grid_size * grid_size,
        coverage_meters=coverage_meters(lat, effective_zoom, grid_size),
        measured=discovery.measured,
    )
    logger.info(
        "Aerial imagery for %.6f, %.6f: %d tiles at zoom %d, %dm coverage",
        lat,
        lng,
        image.tile_count,
        image.zoom_level,
        image.coverage_meters,
    )
    return image


async def get_property_aerial_image(
    lat: float,
    lng: float,
    *,
    zoom: int | None = None,
    grid_size: int | None = None,
    config: ImageryConfig | None = None,
    token_manager: TokenManager | None = None,
    cancel_event: asyncio.Event | None = None,
) -> PropertyAerialImage | None:
    """Discover, fetch and stitch provider imagery centred on ``(lat, lng)``.

    The requested zoom is clamped to the deepest level the discovered image
    offers. ``None`` means no imagery could be produced and callers should
    continue without it. Only :class:`AuthenticationError` (and
    :class:`ImageryCancellationError` when ``cancel_event`` is set) escape.
    """

    config, token_manager = _resolve(config, token_manager)
    zoom = config.default_zoom if zoom is None else zoom
    grid_size = config.default_grid_size if grid_size is None else grid_size
    validate_zoom(zoom)
    validate_grid_size(grid_size)

    try:
        async with asyncio.timeout(config.pipeline_timeout):
            async with _http_client(config) as client:
                return await _acquire_image(
                    client, token_manager, lat, lng, zoom, grid_size, cancel_event
                )
    except TimeoutError:
        logger.warning(
            "Aerial imagery for %.6f, %.6f timed out after %.0f seconds",
            lat,
            lng,
            config.pipeline_timeout,
        )
        return None


async def has_imagery_at(
    lat: float,
    lng: float,
    *,
    config: ImageryConfig | None = None,
    token_manager: TokenManager | None = None,
) -> bool:
    """Return whether the provider has any imagery covering ``(lat, lng)``."""

    try:
        config, token_manager = _resolve(config, token_manager)
        async with _http_client(config) as client:
            result = await discover_ortho_image(client, token_manager, lat, lng)
    except (AuthenticationError, ImageryConfigurationError) as exc:
        logger.warning("Imagery coverage check failed: %s", exc)
        return False
    except Exception:
        logger.exception("Imagery coverage check failed unexpectedly at %.6f, %.6f", lat, lng)
        return False
    return result is not None
