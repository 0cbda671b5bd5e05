"""
Tests for the segment planner: tile geometry, coverage, overlap and
reassembly order.
"""

import random

import pytest

from harvester.models import ImageSegment
from harvester.segments import (
    TilingLimits,
    needs_tiling,
    plan_segments,
    reassemble,
    tile_height_for,
)


def _rows(segments):
    """Distinct (top, bottom) bands in order."""
    bands = []
    for s in segments:
        band = (s.top, s.bottom)
        if band not in bands:
            bands.append(band)
    return bands


# ====================================================================
# Geometry
# ====================================================================

class TestPlanSegments:
    """Tile layout for images of various sizes."""

    def test_small_image_is_single_tile(self):
        segments = plan_segments(800, 600, 4000, 4000, 200)
        assert len(segments) == 1
        s = segments[0]
        assert (s.index, s.left, s.top, s.width, s.height) == (0, 0, 0, 800, 600)

    def test_grid_dimensions(self):
        segments = plan_segments(9000, 10000, 4000, 4000, 200)
        assert len(segments) == 9
        assert [s.left for s in segments[:3]] == [0, 3000, 6000]
        assert [s.width for s in segments[:3]] == [3000, 3000, 3000]
        assert _rows(segments) == [(0, 3334), (3134, 6668), (6468, 10000)]

    def test_indices_are_row_major(self):
        segments = plan_segments(9000, 10000, 4000, 4000, 200)
        assert [s.index for s in segments] == list(range(9))
        keys = [(s.top, s.left) for s in segments]
        assert keys == sorted(keys)

    def test_tall_single_column(self):
        segments = plan_segments(1000, 12000, 4000, 4000, 200)
        assert [(s.top, s.height) for s in segments] == [(0, 4000), (3800, 4200), (7800, 4200)]
        assert all(s.left == 0 and s.width == 1000 for s in segments)

    def test_last_column_takes_remainder(self):
        segments = plan_segments(8001, 100, 4000, 4000, 0)
        assert [s.width for s in segments] == [2667, 2667, 2667]
        assert segments[-1].right == 8001

    @pytest.mark.parametrize("width,height", [
        (0, 100), (100, 0), (-1, 100),
    ])
    def test_non_positive_size_rejected(self, width, height):
        with pytest.raises(ValueError):
            plan_segments(width, height, 4000, 4000, 200)

    def test_non_positive_limits_rejected(self):
        with pytest.raises(ValueError):
            plan_segments(100, 100, 0, 4000, 0)
        with pytest.raises(ValueError):
            plan_segments(100, 100, 4000, 100, -5)


class TestCoverageProperty:
    """Tiles cover the source exactly and adjacent rows share the overlap band."""

    @pytest.mark.parametrize("width,height,max_w,max_h,overlap", [
        (9000, 10000, 4000, 4000, 200),
        (4001, 4001, 4000, 4000, 200),
        (1234, 98765, 4000, 4000, 200),
        (5000, 17, 4000, 4000, 0),
        (3, 50, 2, 7, 1),
    ])
    def test_full_coverage_and_exact_overlap(self, width, height, max_w, max_h, overlap):
        segments = plan_segments(width, height, max_w, max_h, overlap)

        for s in segments:
            assert s.left >= 0 and s.top >= 0
            assert s.right <= width and s.bottom <= height
            assert s.width > 0 and s.height > 0

        # Columns partition the width
        first_row_top = segments[0].top
        columns = [s for s in segments if s.top == first_row_top]
        assert columns[0].left == 0
        assert columns[-1].right == width
        for left, right in zip(columns, columns[1:]):
            assert left.right == right.left

        # Rows cover the height and overlap by exactly ``overlap``
        bands = _rows(segments)
        assert bands[0][0] == 0
        assert bands[-1][1] == height
        for upper, lower in zip(bands, bands[1:]):
            assert upper[1] - lower[0] == overlap

    def test_random_sizes_cover_every_pixel_row(self):
        rng = random.Random(7)
        for _ in range(50):
            width = rng.randint(1, 20000)
            height = rng.randint(1, 40000)
            segments = plan_segments(width, height, 4000, 4000, 200)
            covered = sorted(_rows(segments))
            reach = 0
            for top, bottom in covered:
                assert top <= reach
                reach = max(reach, bottom)
            assert reach == height


# ====================================================================
# Limits
# ====================================================================

class TestNeedsTiling:

    def test_within_limits(self):
        assert not needs_tiling(1024, 4000, 4000, TilingLimits())

    def test_dimension_over_limit(self):
        assert needs_tiling(1024, 4001, 10, TilingLimits())
        assert needs_tiling(1024, 10, 4001, TilingLimits())

    def test_bytes_over_limit(self):
        limits = TilingLimits(max_bytes=1000)
        assert needs_tiling(1001, 10, 10, limits)

    def test_byte_overshoot_shrinks_tile_height(self):
        limits = TilingLimits(max_bytes=45 * 1024 * 1024)
        assert tile_height_for(100 * 1024 * 1024, 3000, limits) == 1000

    def test_tile_height_unchanged_within_byte_limit(self):
        assert tile_height_for(1024, 30000, TilingLimits()) == 4000


# ====================================================================
# Reassembly
# ====================================================================

class TestReassemble:

    def test_orders_by_index_with_blank_line(self):
        segments = [
            ImageSegment(index=2, left=0, top=0, width=1, height=1, text="third"),
            ImageSegment(index=0, left=0, top=0, width=1, height=1, text="first"),
            ImageSegment(index=1, left=0, top=0, width=1, height=1, text="second"),
        ]
        assert reassemble(segments) == "first\n\nsecond\n\nthird"

    def test_empty_tiles_are_skipped(self):
        segments = [
            ImageSegment(index=0, left=0, top=0, width=1, height=1, text="a"),
            ImageSegment(index=1, left=0, top=0, width=1, height=1, text=""),
            ImageSegment(index=2, left=0, top=0, width=1, height=1, text="  "),
            ImageSegment(index=3, left=0, top=0, width=1, height=1, text="b"),
        ]
        assert reassemble(segments) == "a\n\nb"

    def test_overlap_duplicates_are_kept(self):
        segments = [
            ImageSegment(index=0, left=0, top=0, width=1, height=1, text="line one\nline two"),
            ImageSegment(index=1, left=0, top=0, width=1, height=1, text="line two\nline three"),
        ]
        assert reassemble(segments).count("line two") == 2
