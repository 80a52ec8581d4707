from __future__ import annotations

import asyncio
import logging
from typing import List, Sequence, Tuple
from urllib.parse import quote

import httpx

from ..config import PROVIDER_KEY
from .auth import TokenManager
from .compositor import StitchedImage, TileFetchOutcome, composite_tiles
from .http import bearer_headers, response_detail
from .tiles import TileCoordinate, point_to_tile, validate_zoom
from .usage import record_api_usage

logger = logging.getLogger(__name__)

TILE_PATH_TEMPLATE = "/imagery/v3/images/{urn}/tiles/{z}/{x}/{y}"
TILE_USAGE_KEY = f"{PROVIDER_KEY}:tiles"


class ImageryCancellationError(Exception):
    """Raised when the caller cancels an imagery request while tiles are in flight."""


def validate_grid_size(grid_size: int) -> None:
    if grid_size < 1:
        raise ValueError(f"Grid size must be at least 1, got {grid_size}.")


def grid_offsets(grid_size: int) -> List[Tuple[int, int]]:
    """Return ``(dx, dy)`` tile offsets around the centre tile, row by row.

    Each axis spans exactly ``grid_size`` positions starting at
    ``-(grid_size // 2)``, so even grids extend one tile further towards the
    north-west than towards the south-east.
    """

    validate_grid_size(grid_size)
    half = grid_size // 2
    span = range(-half, grid_size - half)
    return [(dx, dy) for dy in span for dx in span]


def tile_url(base_url: str, urn: str, coordinate: TileCoordinate) -> str:
    path = TILE_PATH_TEMPLATE.format(
        urn=quote(urn, safe=""), z=coordinate.z, x=coordinate.x, y=coordinate.y
    )
    return f"{base_url}{path}"


async def fetch_tile(
    client: httpx.AsyncClient,
    token_manager: TokenManager,
    urn: str,
    coordinate: TileCoordinate,
) -> bytes | None:
    """Download one tile, returning ``None`` if the provider does not deliver it."""

    token = await token_manager.get_token(client)
    config = token_manager.config
    params = {"format": config.tile_format, "quality": config.tile_quality}

    try:
        response = await client.get(
            tile_url(config.base_url, urn, coordinate),
            params=params,
            headers=bearer_headers(token),
        )
    except httpx.RequestError as exc:
        logger.warning("Imagery tile %s request error: %s", coordinate, exc)
        return None

    if not response.is_success:
        logger.warning(
            "Imagery tile %s failed with status %s: %s",
            coordinate,
            response.status_code,
            response_detail(response),
        )
        return None

    if not response.content:
        logger.warning("Imagery tile %s returned an empty payload", coordinate)
        return None

    return response.content


async def _join_all(
    tasks: Sequence[asyncio.Task], cancel_event: asyncio.Event | None
) -> List[TileFetchOutcome]:
    gathered = asyncio.gather(*tasks)
    if cancel_event is None:
        return await gathered

    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({gathered, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not gathered.done():
            gathered.cancel()

    if not gathered.done() or gathered.cancelled():
        raise ImageryCancellationError("Imagery request cancelled")
    return gathered.result()


async def fetch_tiles(
    client: httpx.AsyncClient,
    token_manager: TokenManager,
    urn: str,
    center: TileCoordinate,
    grid_size: int,
    *,
    cancel_event: asyncio.Event | None = None,
) -> List[TileFetchOutcome]:
    """Request every tile of the grid concurrently and wait for all of them.

    A failed tile is reported as an outcome without data and does not affect
    the other requests.
    """

    if cancel_event is not None and cancel_event.is_set():
        raise ImageryCancellationError("Imagery request cancelled")

    half = grid_size // 2

    async def fetch_outcome(dx: int, dy: int) -> TileFetchOutcome:
        coordinate = center.offset(dx, dy)
        data = await fetch_tile(client, token_manager, urn, coordinate)
        return TileFetchOutcome(coordinate=coordinate, column=dx + half, row=dy + half, data=data)

    tasks = [asyncio.ensure_future(fetch_outcome(dx, dy)) for dx, dy in grid_offsets(grid_size)]
    try:
        return await _join_all(tasks, cancel_event)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()


async def fetch_grid(
    client: httpx.AsyncClient,
    token_manager: TokenManager,
    urn: str,
    lat: float,
    lng: float,
    zoom: int,
    grid_size: int,
    *,
    cancel_event: asyncio.Event | None = None,
) -> StitchedImage | None:
    """Fetch the ``grid_size`` x ``grid_size`` tiles around a point and stitch them.

    Returns ``None`` when no tile could be fetched.
    """

    validate_zoom(zoom)
    validate_grid_size(grid_size)

    center = point_to_tile(lat, lng, zoom)
    outcomes = await fetch_tiles(
        client, token_manager, urn, center, grid_size, cancel_event=cancel_event
    )

    fetched = sum(1 for outcome in outcomes if outcome.ok)
    record_api_usage(TILE_USAGE_KEY, increment=fetched)
    if fetched == 0:
        logger.warning("No imagery tiles returned for %s around %s", urn, center)
        return None
    if fetched < len(outcomes):
        logger.warning(
            "Only %d of %d imagery tiles returned for %s; missing tiles render black",
            fetched,
            len(outcomes),
            urn,
        )

    return composite_tiles(outcomes, grid_size, quality=token_manager.config.jpeg_quality)
