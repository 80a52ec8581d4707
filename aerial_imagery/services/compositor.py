from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from PIL import Image

from ..config import DEFAULT_JPEG_QUALITY
from .tiles import TILE_SIZE, TileCoordinate

logger = logging.getLogger(__name__)

BACKGROUND_COLOR = (0, 0, 0)
OUTPUT_FORMAT = "JPEG"


@dataclass(frozen=True)
class TileFetchOutcome:
    """Result of one tile request; ``data`` is ``None`` when the tile could not be fetched."""

    coordinate: TileCoordinate
    column: int
    row: int
    data: bytes | None = None

    @property
    def ok(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class StitchedImage:
    data: bytes
    width: int
    height: int
    format: str
    tiles_placed: int


def _encode_mosaic(
    tiles: Sequence[TileFetchOutcome], grid_size: int, quality: int
) -> StitchedImage | None:
    size = grid_size * TILE_SIZE
    mosaic = Image.new("RGB", (size, size), BACKGROUND_COLOR)
    try:
        for outcome in tiles:
            with Image.open(io.BytesIO(outcome.data)) as tile_image:
                tile_rgb = tile_image.convert("RGB")
            if tile_rgb.size != (TILE_SIZE, TILE_SIZE):
                tile_rgb = tile_rgb.resize((TILE_SIZE, TILE_SIZE), Image.LANCZOS)
            mosaic.paste(tile_rgb, (outcome.column * TILE_SIZE, outcome.row * TILE_SIZE))

        buffer = io.BytesIO()
        mosaic.save(buffer, format=OUTPUT_FORMAT, quality=quality)
    except (OSError, ValueError) as exc:
        logger.warning("Tile stitching failed: %s", exc)
        return None

    return StitchedImage(
        data=buffer.getvalue(),
        width=size,
        height=size,
        format=OUTPUT_FORMAT,
        tiles_placed=len(tiles),
    )


def _center_tile(
    tiles: Sequence[TileFetchOutcome], grid_size: int, quality: int
) -> StitchedImage | None:
    center = grid_size // 2
    for outcome in tiles:
        if outcome.column == center and outcome.row == center:
            logger.warning("Falling back to the centre tile %s", outcome.coordinate)
            return StitchedImage(
                data=outcome.data,
                width=TILE_SIZE,
                height=TILE_SIZE,
                format=OUTPUT_FORMAT,
                tiles_placed=1,
            )
    return None


CompositingStrategy = Callable[[Sequence[TileFetchOutcome], int, int], Optional[StitchedImage]]

COMPOSITING_STRATEGIES: Tuple[CompositingStrategy, ...] = (_encode_mosaic, _center_tile)


def composite_tiles(
    outcomes: Sequence[TileFetchOutcome],
    grid_size: int,
    *,
    quality: int = DEFAULT_JPEG_QUALITY,
) -> StitchedImage | None:
    """Stitch fetched tiles onto a ``grid_size`` x ``grid_size`` canvas.

    Missing tiles leave the black background visible. A single-tile grid is
    returned without re-encoding. When the mosaic cannot be encoded the centre
    tile is returned on its own, and ``None`` if that tile is missing too.
    """

    tiles = [outcome for outcome in outcomes if outcome.ok]
    if not tiles:
        return None

    if grid_size == 1 and len(tiles) == 1:
        return StitchedImage(
            data=tiles[0].data,
            width=TILE_SIZE,
            height=TILE_SIZE,
            format=OUTPUT_FORMAT,
            tiles_placed=1,
        )

    for strategy in COMPOSITING_STRATEGIES:
        stitched = strategy(tiles, grid_size, quality)
        if stitched is not None:
            return stitched
    return None
