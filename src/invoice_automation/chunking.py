"""
Page rasterisation and image tiling for chunked OCR.

A page is scaled (conceptually) so its short side is `short_side_px`. Pages whose aspect
ratio exceeds `aspect_trigger` would not fit the `long_side_max_px` frame at that scale, so
they are cut along the long axis into overlapping windows; everything else is one chunk.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

from PIL import Image

from .config import ChunkingSettings


@dataclass(frozen=True)
class ImageChunk:
    """Crop box in source-image pixels (right/bottom exclusive)."""
    index: int
    left: int
    top: int
    right: int
    bottom: int

    @property
    def box(self) -> tuple[int, int, int, int]:
        return (self.left, self.top, self.right, self.bottom)

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top


def _window_starts(length: int, window: int, overlap: int) -> list[int]:
    if window >= length:
        return [0]
    step = window - overlap
    count = math.ceil((length - window) / step) + 1
    starts = [i * step for i in range(count - 1)]
    starts.append(length - window)
    return starts


def plan_chunks(width: int, height: int, chunking: ChunkingSettings) -> list[ImageChunk]:
    """Split a width x height page into reading-order chunks that cover it exactly."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size {width}x{height}")

    short, long = min(width, height), max(width, height)
    if long / short <= chunking.aspect_trigger:
        return [ImageChunk(0, 0, 0, width, height)]

    scale = chunking.short_side_px / short
    window = min(long, max(1, round(chunking.long_side_max_px / scale)))
    overlap = round(window * chunking.overlap_pct)
    starts = _window_starts(long, window, overlap)

    horizontal = width > height
    chunks: list[ImageChunk] = []
    for i, start in enumerate(starts):
        if horizontal:
            chunks.append(ImageChunk(i, start, 0, start + window, height))
        else:
            chunks.append(ImageChunk(i, 0, start, width, start + window))
    return chunks


def _fit_short_side(image: Image.Image, short_side_px: int) -> Image.Image:
    w, h = image.size
    short = min(w, h)
    if short <= short_side_px:
        return image
    scale = short_side_px / short
    return image.resize((max(1, round(w * scale)), max(1, round(h * scale))), Image.LANCZOS)


def chunk_image(image: Image.Image, chunking: ChunkingSettings) -> list[tuple[ImageChunk, Image.Image]]:
    """Crop `image` per plan_chunks and downscale each crop to the Vision-friendly size."""
    plan = plan_chunks(image.width, image.height, chunking)
    return [(c, _fit_short_side(image.crop(c.box), chunking.short_side_px)) for c in plan]


def render_pages(pdf_bytes: bytes, dpi: int, max_pages: int) -> list[Image.Image]:
    """Rasterise up to `max_pages` pages with pdf2image (requires poppler)."""
    from pdf2image import convert_from_bytes

    return convert_from_bytes(pdf_bytes, dpi=dpi, first_page=1, last_page=max_pages)
