"""
Segment Planner
===============
Pure geometry for splitting an oversized image into overlapping tiles.

The document-understanding endpoint rejects images above a byte-size or
pixel-dimension ceiling, so large images are cut into a grid of tiles,
each processed independently and then reassembled.

Layout rules:
- Columns are equal width, the last column takes the remainder.
- Rows are equal height, every row after the first starts ``overlap``
  pixels higher so a text line cut by one boundary is whole in the
  neighbouring tile.
- The union of the tiles is exactly the source rectangle.

Known limitation: a line inside the overlap band is read twice and may
appear twice in the reassembled text. It is left in place on purpose;
line-level dedup would also drop lines that legitimately repeat.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List

from .models import ImageSegment

# Blank line between tiles when reassembling
SEGMENT_SEPARATOR = "\n\n"


@dataclass
class TilingLimits:
    """Ceilings enforced by the document-understanding endpoint."""
    max_bytes: int = 45 * 1024 * 1024   # endpoint hard limit is 50 MB
    max_width: int = 4000
    max_height: int = 4000
    overlap: int = 200


def needs_tiling(byte_size: int, width: int, height: int, limits: TilingLimits) -> bool:
    """True if the image breaks the byte ceiling or either dimension ceiling."""
    if byte_size > limits.max_bytes:
        return True
    return width > limits.max_width or height > limits.max_height


def tile_height_for(byte_size: int, height: int, limits: TilingLimits) -> int:
    """Tile height to plan with.

    When only the byte ceiling is broken the dimension limits would give a
    single tile as heavy as the original, so the height is divided by the
    byte overshoot instead.
    """
    tile_height = limits.max_height
    if byte_size > limits.max_bytes:
        pieces = math.ceil(byte_size / limits.max_bytes)
        tile_height = min(tile_height, max(1, math.ceil(height / pieces)))
    return tile_height


def plan_segments(
    width: int,
    height: int,
    max_tile_width: int,
    max_tile_height: int,
    overlap: int = 0,
) -> List[ImageSegment]:
    """
    Split a ``width`` x ``height`` image into an ordered tile list.

    Args:
        width, height: Source image size in pixels (must be positive)
        max_tile_width, max_tile_height: Tile ceilings (must be positive)
        overlap: Vertical overlap between stacked tiles (>= 0)

    Returns:
        Segments in row-major order; ``index`` is the reassembly order.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"image size must be positive, got {width}x{height}")
    if max_tile_width <= 0 or max_tile_height <= 0:
        raise ValueError(
            f"tile limits must be positive, got {max_tile_width}x{max_tile_height}"
        )
    if overlap < 0:
        raise ValueError(f"overlap must be >= 0, got {overlap}")

    h_splits = math.ceil(width / max_tile_width)
    v_splits = math.ceil(height / max_tile_height)
    base_w = math.ceil(width / h_splits)
    base_h = math.ceil(height / v_splits)

    segments: List[ImageSegment] = []
    for row in range(v_splits):
        top = max(0, row * base_h - (overlap if row > 0 else 0))
        if row == v_splits - 1:
            seg_h = height - top
        elif row == 0:
            seg_h = base_h
        else:
            seg_h = base_h + overlap
        seg_h = min(seg_h, height - top)

        for col in range(h_splits):
            left = col * base_w
            seg_w = width - left if col == h_splits - 1 else base_w
            seg_w = min(seg_w, width - left)
            if seg_w <= 0 or seg_h <= 0:
                continue
            segments.append(ImageSegment(
                index=len(segments),
                left=left,
                top=top,
                width=seg_w,
                height=seg_h,
            ))

    return segments


def reassemble(segments: Iterable[ImageSegment]) -> str:
    """Join tile texts in reassembly order, a blank line between tiles."""
    ordered = sorted(segments, key=lambda s: s.index)
    return SEGMENT_SEPARATOR.join(s.text.strip() for s in ordered if s.text and s.text.strip())
