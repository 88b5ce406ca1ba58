import io
import struct

import pytest
from PIL import Image

from receipty.printing.errors import ImageDecodeError
from receipty.printing.payload import (
    CUT_FULL,
    CUT_PARTIAL,
    RASTER_HEADER,
    encode_cut_command,
    encode_feed_command,
    encode_footer,
    encode_image_payload,
    encode_job,
    encode_text_payload,
)


def _png(size, color, mode="RGB") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.mark.parametrize("feed_lines", [0, 1, 2, 5])
@pytest.mark.parametrize("cut_mode,cut_bytes", [("none", b""), ("partial", CUT_PARTIAL), ("full", CUT_FULL)])
def test_footer_is_feed_bytes_then_cut(feed_lines, cut_mode, cut_bytes):
    footer = encode_footer(feed_lines, cut_mode)
    assert footer == b"\n" * feed_lines + cut_bytes
    assert len(footer) == feed_lines + (0 if cut_mode == "none" else 3)


def test_footer_rejects_bad_arguments():
    with pytest.raises(ValueError):
        encode_footer(-1, "none")
    with pytest.raises(ValueError):
        encode_footer(1, "half")


def test_cut_command_bytes_are_exact():
    assert CUT_FULL == bytes([0x1D, 0x56, 0x00])
    assert CUT_PARTIAL == bytes([0x1D, 0x56, 0x01])


@pytest.mark.parametrize("text", ["Hello", "Hello\n", "a\tb\nc", "x" * 500])
def test_text_gets_exactly_one_terminator(text):
    out = encode_text_payload(text)
    assert out.endswith(b"\n")
    assert not out.endswith(b"\n\n")
    assert out.rstrip(b"\n") == text.rstrip("\n").encode("ascii")


def test_empty_text_depends_on_context():
    assert encode_text_payload("") == b"\n"
    assert encode_text_payload(None) == b"\n"
    assert encode_text_payload("", allow_empty=False) == b""


def test_hello_partial_scenario():
    assert encode_job("Hello", None, 2, "partial") == b"Hello\n" + b"\x0a\x0a" + bytes([0x1D, 0x56, 0x01])


def test_feed_command_is_at_least_one_line():
    assert encode_feed_command(0) == b"\n"
    assert encode_feed_command(3) == b"\n\n\n"
    assert encode_cut_command(1, "full") == b"\n" + CUT_FULL


def test_black_square_raster():
    result = encode_image_payload(_png((8, 8), "black"), width=8)
    assert result.payload[:4] == RASTER_HEADER
    assert (result.width, result.height) == (8, 8)
    assert len(result.payload) == 16
    assert result.payload[8:] == b"\xff" * 8


def test_raster_header_matches_resized_dimensions():
    result = encode_image_payload(_png((100, 50), "white"), width=384)
    row_bytes, height = struct.unpack("<HH", result.payload[4:8])
    assert (result.width, result.height) == (384, 192)
    assert row_bytes == 48
    assert height == 192
    assert len(result.payload) == 8 + 48 * 192
    assert set(result.payload[8:]) == {0}


def test_row_padding_bits_are_zero():
    result = encode_image_payload(_png((10, 5), "black"), width=10)
    assert result.row_bytes == 2
    assert len(result.payload) == 8 + 2 * 5
    assert result.payload[8:10] == b"\xff\xc0"


def test_transparent_pixels_flatten_to_white():
    data = _png((16, 4), (0, 0, 0, 0), mode="RGBA")
    result = encode_image_payload(data, width=16)
    assert set(result.payload[8:]) == {0}


def test_threshold_decides_which_pixels_print():
    grey = Image.new("L", (8, 1), 100)
    assert encode_image_payload(grey, width=8, threshold=128).payload[8:] == b"\xff"
    assert encode_image_payload(grey, width=8, threshold=64).payload[8:] == b"\x00"


def test_undecodable_image_raises():
    with pytest.raises(ImageDecodeError):
        encode_image_payload(b"definitely not an image")


def test_job_orders_text_image_footer():
    image = _png((8, 2), "black")
    payload = encode_job("Hi", image, 1, "full", image_width=8)
    assert payload.startswith(b"Hi\n" + RASTER_HEADER)
    assert payload.endswith(b"\n" + CUT_FULL)
    assert len(payload) == 3 + 8 + 2 + 1 + 3


def test_image_job_skips_placeholder_newline():
    payload = encode_job("", _png((8, 1), "white"), 0, "none", image_width=8)
    assert payload.startswith(RASTER_HEADER)


def test_too_tall_image_rejected_before_resizing(monkeypatch):
    from receipty.printing import payload

    def no_resize(*args, **kwargs):
        raise AssertionError("image was resized before the size check")

    monkeypatch.setattr(payload, "_fit", no_resize)
    with pytest.raises(ImageDecodeError, match="384x153600"):
        encode_image_payload(_png((1, 400), "black"), width=384)


def test_decompression_bomb_is_a_decode_error(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    with pytest.raises(ImageDecodeError):
        encode_image_payload(_png((100, 100), "white"), width=8)


def test_packed_rows_match_pixel_order():
    img = Image.new("L", (16, 2), 255)
    for x in (0, 7, 8, 15):
        img.putpixel((x, 0), 0)
    img.putpixel((3, 1), 0)
    payload = encode_image_payload(img, width=16).payload
    assert payload[8:] == bytes([0x81, 0x81, 0x10, 0x00])
