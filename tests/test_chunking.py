from __future__ import annotations

import pytest
from PIL import Image

from invoice_automation.chunking import ImageChunk, chunk_image, plan_chunks
from invoice_automation.config import ChunkingSettings


def _assert_covers(chunks: list[ImageChunk], width: int, height: int, overlap: int) -> None:
    horizontal = width > height
    starts = [c.left if horizontal else c.top for c in chunks]
    ends = [c.right if horizontal else c.bottom for c in chunks]
    assert starts[0] == 0
    assert ends[-1] == (width if horizontal else height)
    for prev_end, next_start in zip(ends, starts[1:]):
        assert prev_end - next_start >= overlap
    for c in chunks:
        if horizontal:
            assert (c.top, c.bottom) == (0, height)
        else:
            assert (c.left, c.right) == (0, width)


def test_normal_page_is_a_single_chunk():
    chunks = plan_chunks(1000, 1400, ChunkingSettings())
    assert chunks == [ImageChunk(0, 0, 0, 1000, 1400)]


def test_aspect_exactly_at_trigger_is_not_split():
    chunks = plan_chunks(1000, 2700, ChunkingSettings())
    assert len(chunks) == 1


def test_tall_receipt_splits_into_row_strips():
    chunks = plan_chunks(800, 4000, ChunkingSettings())
    # 768/800 scale -> 2133px window, 107px overlap
    assert [c.box for c in chunks] == [(0, 0, 800, 2133), (0, 1867, 800, 4000)]
    _assert_covers(chunks, 800, 4000, overlap=107)


def test_wide_page_splits_into_column_strips():
    chunks = plan_chunks(5000, 1000, ChunkingSettings())
    assert [c.box for c in chunks] == [(0, 0, 2667, 1000), (2333, 0, 5000, 1000)]
    _assert_covers(chunks, 5000, 1000, overlap=133)


def test_very_long_page_gets_evenly_stepped_windows():
    chunks = plan_chunks(768, 10000, ChunkingSettings())
    assert len(chunks) == 6
    assert [c.index for c in chunks] == list(range(6))
    assert all(c.height == 2048 for c in chunks)
    assert chunks[1].top == 1946
    _assert_covers(chunks, 768, 10000, overlap=102)


def test_zero_overlap_still_covers_page():
    chunks = plan_chunks(768, 6000, ChunkingSettings(overlap_pct=0.0))
    _assert_covers(chunks, 768, 6000, overlap=0)


@pytest.mark.parametrize("size", [(0, 100), (100, 0), (-5, 10)])
def test_invalid_sizes_raise(size):
    with pytest.raises(ValueError):
        plan_chunks(*size, ChunkingSettings())


def test_chunk_image_downscales_crops_to_short_side():
    image = Image.new("RGB", (800, 4000), "white")
    crops = chunk_image(image, ChunkingSettings())
    assert len(crops) == 2
    for chunk, crop in crops:
        assert chunk.height == 2133
        assert crop.size == (768, 2048)


def test_chunk_image_never_upscales():
    image = Image.new("RGB", (400, 600), "white")
    [(chunk, crop)] = chunk_image(image, ChunkingSettings())
    assert chunk.box == (0, 0, 400, 600)
    assert crop.size == (400, 600)
