from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from ..config import PROVIDER_KEY
from .auth import TokenManager
from .http import bearer_headers, response_detail
from .usage import record_api_usage

logger = logging.getLogger(__name__)

RANK_LOCATION_PATH = "/imagery/v3/discovery/rank/location"
ORTHOMOSAIC_SEARCH_PATH = "/imagery/v3/discovery/orthomosaics/search"

# 0.00075° either side of the point gives a search square of roughly 150 m.
SEARCH_HALF_SPAN_DEGREES = 0.00075

# Placeholders used when the provider does not report a measurement.
DEFAULT_GSD_METERS = 0.02
DEFAULT_MAX_ZOOM = 21
UNKNOWN_CAPTURE_DATE = "unknown"

STRATEGY_RANK_LOCATION = "rank_location"
STRATEGY_ORTHOMOSAIC = "orthomosaic_search"

FieldPath = Tuple[str, ...]

# Canonical field name -> candidate key paths, tried in order.
IMAGE_FIELDS: Dict[str, Tuple[FieldPath, ...]] = {
    "urn": (("urn",), ("image_urn",)),
    "gsd_meters": (("calculated_gsd", "value"), ("gsd", "value"), ("gsd",)),
    "max_zoom": (("zoom_range", "maximum_zoom_level"), ("max_zoom",)),
}

CAPTURE_FIELDS: Dict[str, Tuple[FieldPath, ...]] = {
    "urn": (("capture", "urn"),),
    "start_date": (("capture", "start_date"), ("capture", "end_date")),
    "end_date": (("capture", "end_date"),),
    "labels": (("capture", "labels"),),
}


@dataclass(frozen=True)
class Capture:
    urn: str
    start_date: str
    end_date: str
    labels: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class OrthoImageRef:
    urn: str
    gsd_meters: float
    max_zoom_level: int


@dataclass(frozen=True)
class DiscoveryResult:
    """Imagery handle resolved for a location.

    ``measured`` is ``False`` when the GSD, zoom range and capture date are
    placeholders rather than values reported for the image.
    """

    image_urn: str
    capture_date: str
    gsd_meters: float
    max_zoom: int
    measured: bool = True
    strategy: str = STRATEGY_RANK_LOCATION


def lookup_field(payload: Any, candidates: Sequence[FieldPath], default: Any = None) -> Any:
    """Return the first truthy value found along ``candidates`` in ``payload``."""

    for path in candidates:
        value = payload
        for key in path:
            if not isinstance(value, dict):
                value = None
                break
            value = value.get(key)
        if value:
            return value
    return default


def search_polygon(lat: float, lng: float, half_span: float = SEARCH_HALF_SPAN_DEGREES) -> str:
    """Return an EWKT square centred on ``(lat, lng)``."""

    west, east = lng - half_span, lng + half_span
    south, north = lat - half_span, lat + half_span
    ring = ((west, south), (east, south), (east, north), (west, north), (west, south))
    coordinates = ",".join(f"{x} {y}" for x, y in ring)
    return f"SRID=4326;POLYGON(({coordinates}))"


def coerce_field(value: Any, convert: Callable[[Any], Any], default: Any) -> Any:
    """Convert a provider value, returning ``default`` when it does not parse."""

    try:
        return convert(value)
    except (ValueError, TypeError, OverflowError):
        return default


def _as_zoom_level(value: Any) -> int:
    return int(float(value))


def parse_capture(entry: Dict[str, Any]) -> Capture:
    labels = lookup_field(entry, CAPTURE_FIELDS["labels"], default=())
    if not isinstance(labels, (list, tuple)):
        labels = ()
    return Capture(
        urn=str(lookup_field(entry, CAPTURE_FIELDS["urn"], default="")),
        start_date=str(lookup_field(entry, CAPTURE_FIELDS["start_date"], default=UNKNOWN_CAPTURE_DATE)),
        end_date=str(lookup_field(entry, CAPTURE_FIELDS["end_date"], default="")),
        labels=tuple(str(label) for label in labels),
    )


def parse_ortho_image(image: Dict[str, Any]) -> OrthoImageRef | None:
    urn = lookup_field(image, IMAGE_FIELDS["urn"])
    if not urn:
        return None
    return OrthoImageRef(
        urn=str(urn),
        gsd_meters=coerce_field(
            lookup_field(image, IMAGE_FIELDS["gsd_meters"]), float, DEFAULT_GSD_METERS
        ),
        max_zoom_level=coerce_field(
            lookup_field(image, IMAGE_FIELDS["max_zoom"]), _as_zoom_level, DEFAULT_MAX_ZOOM
        ),
    )


def select_ortho_image(payload: Dict[str, Any]) -> DiscoveryResult | None:
    """Pick the first capture in a rank/location response that has an ortho image."""

    captures = payload.get("captures")
    if not isinstance(captures, list):
        return None

    for entry in captures:
        if not isinstance(entry, dict):
            continue
        orthos = entry.get("orthos")
        images: List[Any] = orthos.get("images") if isinstance(orthos, dict) else None
        if not isinstance(images, list) or not images or not isinstance(images[0], dict):
            continue
        image = parse_ortho_image(images[0])
        if image is None:
            continue
        capture = parse_capture(entry)
        return DiscoveryResult(
            image_urn=image.urn,
            capture_date=capture.start_date,
            gsd_meters=image.gsd_meters,
            max_zoom=image.max_zoom_level,
        )
    return None


async def _post_discovery(
    client: httpx.AsyncClient,
    token_manager: TokenManager,
    path: str,
    body: Dict[str, Any],
    *,
    usage_key: str,
) -> Dict[str, Any] | None:
    token = await token_manager.get_token(client)
    url = f"{token_manager.config.base_url}{path}"

    try:
        response = await client.post(url, json=body, headers=bearer_headers(token, json_body=True))
    except httpx.RequestError as exc:
        logger.warning("Imagery discovery request to %s failed: %s", path, exc)
        return None

    if response.status_code == 401:
        token_manager.invalidate()

    if not response.is_success:
        logger.warning(
            "Imagery discovery request to %s failed with status %s: %s",
            path,
            response.status_code,
            response_detail(response),
        )
        return None

    try:
        payload = response.json()
    except ValueError:
        logger.warning("Imagery discovery response from %s is not valid JSON", path)
        return None

    record_api_usage(usage_key)
    if not isinstance(payload, dict):
        logger.warning("Unexpected imagery discovery payload from %s: %r", path, type(payload))
        return None
    return payload


async def discover_ranked_ortho(
    client: httpx.AsyncClient, token_manager: TokenManager, lat: float, lng: float
) -> DiscoveryResult | None:
    """Ask the provider to rank captures at the location and take the first ortho image."""

    body = {
        "polygon": {"ewkt": {"value": search_polygon(lat, lng)}},
        "view": {"orthos": {}, "max_images_per_view": 1},
        "response_props": {"calculated_gsd": True, "zoom_range": True},
    }
    payload = await _post_discovery(
        client, token_manager, RANK_LOCATION_PATH, body, usage_key=f"{PROVIDER_KEY}:discovery"
    )
    if payload is None:
        return None
    return select_ortho_image(payload)


async def discover_orthomosaic(
    client: httpx.AsyncClient, token_manager: TokenManager, lat: float, lng: float
) -> DiscoveryResult | None:
    """Search orthomosaic products covering the location.

    Orthomosaic search results carry no capture metadata, so the result is
    reported with placeholder values and ``measured=False``.
    """

    body = {
        "location": {"area": {"ewkt": {"value": search_polygon(lat, lng)}}},
        "page": {"size": 1},
    }
    payload = await _post_discovery(
        client,
        token_manager,
        ORTHOMOSAIC_SEARCH_PATH,
        body,
        usage_key=f"{PROVIDER_KEY}:orthomosaics",
    )
    if payload is None:
        return None

    orthomosaics = payload.get("orthomosaics")
    if not isinstance(orthomosaics, list) or not orthomosaics:
        return None
    urn = lookup_field(orthomosaics[0], IMAGE_FIELDS["urn"])
    if not urn:
        return None
    return DiscoveryResult(
        image_urn=str(urn),
        capture_date=UNKNOWN_CAPTURE_DATE,
        gsd_meters=DEFAULT_GSD_METERS,
        max_zoom=DEFAULT_MAX_ZOOM,
        measured=False,
        strategy=STRATEGY_ORTHOMOSAIC,
    )


DiscoveryStrategy = Callable[
    [httpx.AsyncClient, TokenManager, float, float], Awaitable[Optional[DiscoveryResult]]
]

DISCOVERY_STRATEGIES: Tuple[DiscoveryStrategy, ...] = (discover_ranked_ortho, discover_orthomosaic)


async def discover_ortho_image(
    client: httpx.AsyncClient, token_manager: TokenManager, lat: float, lng: float
) -> DiscoveryResult | None:
    """Resolve the best imagery handle for ``(lat, lng)``.

    Strategies are tried in order until one produces a result. ``None`` means
    the provider has no imagery at the location; authentication failures
    propagate.
    """

    for strategy in DISCOVERY_STRATEGIES:
        result = await strategy(client, token_manager, lat, lng)
        if result is not None:
            logger.info(
                "Imagery discovery via %s found %s (captured %s)",
                result.strategy,
                result.image_urn,
                result.capture_date,
            )
            return result
    logger.warning("No aerial imagery available at %.6f, %.6f", lat, lng)
    return None
