"""
ESC/POS payload encoding for receipty.

Pure functions, no I/O:
- encode_text_payload: sanitized text to bytes with a guaranteed line terminator
- encode_image_payload: any Pillow-readable image to a 1-bit raster (GS v 0)
- encode_footer: feed lines followed by an optional cut command
- encode_job: text, image and footer in the order the printer expects

Control payloads used by the printer client (feed, cut) are built here too so
that every byte sent to the device originates from this module.
"""

from __future__ import annotations

import io
import logging
import struct
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from PIL import Image, ImageOps, UnidentifiedImageError

from receipty.printing.errors import ImageDecodeError

logger = logging.getLogger(__name__)

LF = b"\x0a"
CUT_FULL = b"\x1d\x56\x00"  # GS V 0
CUT_PARTIAL = b"\x1d\x56\x01"  # GS V 1
RASTER_HEADER = b"\x1d\x76\x30\x00"  # GS v 0, normal density

CUT_MODES = ("none", "partial", "full")

# 80 mm paper at 203 dpi
DEFAULT_IMAGE_WIDTH = 384
DEFAULT_THRESHOLD = 128

ImageSource = Union[bytes, bytearray, Image.Image]


@dataclass(frozen=True)
class RasterImage:
    """Encoded raster command plus the dimensions it was rendered at."""

    payload: bytes
    width: int
    height: int

    @property
    def row_bytes(self) -> int:
        return (self.width + 7) // 8


def encode_text_payload(text: Optional[str], *, allow_empty: bool = True) -> bytes:
    """
    Encode text as ASCII and make sure it ends with exactly one added LF.

    Empty text yields a single LF when allow_empty is set (a standalone text
    job), and nothing otherwise (text is one part of a text+image job).
    """
    if not text:
        return LF if allow_empty else b""
    data = text.encode("ascii", errors="replace")
    if not data.endswith(LF):
        data += LF
    return data


def encode_footer(feed_lines: int, cut_mode: str) -> bytes:
    """
    Return feed_lines LF bytes followed by the cut command for cut_mode.
    """
    if feed_lines < 0:
        raise ValueError("feed_lines must be >= 0")
    if cut_mode not in CUT_MODES:
        raise ValueError(f"Unsupported cut mode: {cut_mode!r}")
    footer = LF * feed_lines
    if cut_mode == "full":
        footer += CUT_FULL
    elif cut_mode == "partial":
        footer += CUT_PARTIAL
    return footer


def encode_feed_command(feed_lines: int) -> bytes:
    """Payload for a manual feed: at least one LF."""
    return LF * max(1, feed_lines)


def encode_cut_command(feed_lines: int, cut_mode: str) -> bytes:
    """Payload for a manual cut. Callers reject cut_mode 'none' beforehand."""
    return encode_footer(feed_lines, cut_mode)


def _open_image(source: ImageSource) -> Image.Image:
    if isinstance(source, Image.Image):
        img = source
    else:
        try:
            img = Image.open(io.BytesIO(bytes(source)))
            img.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            raise ImageDecodeError(f"Could not decode image: {e}") from e
    w, h = img.size
    if w <= 0 or h <= 0:
        raise ImageDecodeError(f"Image has no usable dimensions: {w}x{h}")
    return img


def _flatten_alpha(img: Image.Image) -> Image.Image:
    """Composite any transparency onto a white background."""
    if img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        background.alpha_composite(rgba)
        return background.convert("RGB")
    return img


def _raster_size(img: Image.Image, width: int) -> Tuple[int, int]:
    """Target size for `width` keeping aspect ratio; rejects what GS v 0 cannot address."""
    src_w, src_h = img.size
    height = max(1, round(src_h * width / src_w))
    if (width + 7) // 8 > 0xFFFF or height > 0xFFFF:
        raise ImageDecodeError(f"Image too large for a raster command: {width}x{height}")
    return width, height


def _fit(img: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """Scale into `size`, letterboxed on white."""
    if img.size == size:
        return img
    fitted = ImageOps.contain(img, size)
    canvas = Image.new(fitted.mode, size, "white")
    canvas.paste(fitted, ((size[0] - fitted.width) // 2, (size[1] - fitted.height) // 2))
    return canvas


def encode_image_payload(
    image: ImageSource,
    width: int = DEFAULT_IMAGE_WIDTH,
    threshold: int = DEFAULT_THRESHOLD,
) -> RasterImage:
    """
    Render an image into a GS v 0 raster command.

    Pixels darker than threshold print (bit 1). Rows are packed MSB-first,
    eight pixels per byte, and the last byte of a row is zero-padded.
    """
    if width <= 0:
        raise ValueError("width must be positive")
    if not 0 <= threshold <= 255:
        raise ValueError("threshold must be within 0..255")

    img = _open_image(image)
    out_w, out_h = _raster_size(img, width)
    img = _flatten_alpha(img)
    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    grey = _fit(img, (out_w, out_h)).convert("L")

    # Mode "1" packs rows MSB-first with zero padding, which is the GS v 0 layout.
    lut = [255 if level < threshold else 0 for level in range(256)]
    raster = grey.point(lut, "1").tobytes()

    row_bytes = (out_w + 7) // 8
    header = RASTER_HEADER + struct.pack("<HH", row_bytes, out_h)
    logger.debug("Encoded raster image %dx%d (%d bytes)", out_w, out_h, len(raster))
    return RasterImage(payload=header + raster, width=out_w, height=out_h)


def encode_job(
    text: Optional[str] = None,
    image: Optional[ImageSource] = None,
    feed_lines: int = 0,
    cut_mode: str = "none",
    *,
    image_width: int = DEFAULT_IMAGE_WIDTH,
    threshold: int = DEFAULT_THRESHOLD,
) -> bytes:
    """
    Build the complete job payload: text, then image, then footer.
    """
    chunks = []
    if image is None:
        chunks.append(encode_text_payload(text, allow_empty=True))
    else:
        chunks.append(encode_text_payload(text, allow_empty=False))
        chunks.append(encode_image_payload(image, width=image_width, threshold=threshold).payload)
    chunks.append(encode_footer(feed_lines, cut_mode))
    return b"".join(chunks)


__all__ = [
    "CUT_FULL",
    "CUT_MODES",
    "CUT_PARTIAL",
    "DEFAULT_IMAGE_WIDTH",
    "DEFAULT_THRESHOLD",
    "LF",
    "RASTER_HEADER",
    "RasterImage",
    "encode_cut_command",
    "encode_feed_command",
    "encode_footer",
    "encode_image_payload",
    "encode_job",
    "encode_text_payload",
]
