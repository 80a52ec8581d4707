"""Aerial imagery acquisition and tile stitching for property analysis."""

from .config import ImageryConfig, ImageryConfigurationError, is_configured
from .services import (
    AuthenticationError,
    ImageryCancellationError,
    PropertyAerialImage,
    get_property_aerial_image,
    has_imagery_at,
)

__all__ = [
    "AuthenticationError",
    "ImageryCancellationError",
    "ImageryConfig",
    "ImageryConfigurationError",
    "PropertyAerialImage",
    "get_property_aerial_image",
    "has_imagery_at",
    "is_configured",
]
