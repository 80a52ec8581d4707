"""Service utilities exposed by the ``aerial_imagery.services`` package."""

from .auth import AuthenticationError, TokenManager
from .discovery import DiscoveryResult, discover_ortho_image, discover_orthomosaic
from .fetcher import ImageryCancellationError, fetch_grid
from .imagery import PropertyAerialImage, get_property_aerial_image, has_imagery_at
from .tiles import TileCoordinate, meters_per_pixel, point_to_tile, tile_to_point

__all__ = [
    "AuthenticationError",
    "DiscoveryResult",
    "ImageryCancellationError",
    "PropertyAerialImage",
    "TileCoordinate",
    "TokenManager",
    "discover_orthomosaic",
    "discover_ortho_image",
    "fetch_grid",
    "get_property_aerial_image",
    "has_imagery_at",
    "meters_per_pixel",
    "point_to_tile",
    "tile_to_point",
]
