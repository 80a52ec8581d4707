"""Web Mercator slippy-map tile arithmetic.

All functions follow the standard OpenStreetMap tiling scheme: at zoom ``z``
the world is ``2**z`` tiles wide and tall, tile ``(0, 0)`` is the north-west
corner and each tile is 256 pixels square.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

TILE_SIZE = 256
MIN_ZOOM = 0
MAX_ZOOM = 22
# Equatorial ground resolution at zoom 0, metres per pixel.
EQUATOR_METERS_PER_PIXEL = 156543.03392


@dataclass(frozen=True)
class TileCoordinate:
    z: int
    x: int
    y: int

    def offset(self, dx: int, dy: int) -> "TileCoordinate":
        return TileCoordinate(z=self.z, x=self.x + dx, y=self.y + dy)

    def __str__(self) -> str:
        return f"{self.z}/{self.x}/{self.y}"


def validate_zoom(zoom: int) -> None:
    if not MIN_ZOOM <= zoom <= MAX_ZOOM:
        raise ValueError(f"Zoom level must be between {MIN_ZOOM} and {MAX_ZOOM}, got {zoom}.")


def point_to_tile(lat: float, lng: float, zoom: int) -> TileCoordinate:
    """Return the tile containing ``(lat, lng)`` at ``zoom``."""

    n = 2 ** zoom
    x = math.floor((lng + 180) / 360 * n)
    lat_rad = lat * math.pi / 180
    y = math.floor((1 - math.log(math.tan(lat_rad) + 1 / math.cos(lat_rad)) / math.pi) / 2 * n)
    return TileCoordinate(z=zoom, x=x, y=y)


def tile_to_point(x: float, y: float, zoom: int) -> Tuple[float, float]:
    """Return the ``(lat, lng)`` of the north-west corner of tile ``(x, y)``."""

    n = 2 ** zoom
    lng = x / n * 360 - 180
    lat_rad = math.atan(math.sinh(math.pi * (1 - 2 * y / n)))
    return lat_rad * 180 / math.pi, lng


def meters_per_pixel(lat: float, zoom: int) -> float:
    return EQUATOR_METERS_PER_PIXEL * math.cos(lat * math.pi / 180) / 2 ** zoom


def coverage_meters(lat: float, zoom: int, grid_size: int) -> int:
    """Ground width of a ``grid_size`` x ``grid_size`` tile composite, rounded to metres."""

    # Halves round up, not to even.
    return int(math.floor(meters_per_pixel(lat, zoom) * grid_size * TILE_SIZE + 0.5))
