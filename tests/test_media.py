from __future__ import annotations

import base64
import io
from pathlib import Path

import pytest
from PIL import Image

from media import image_to_data_url, strip_data_url


def _png_bytes(size=(400, 200), mode="RGBA") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, (200, 30, 30, 255) if mode == "RGBA" else (200, 30, 30)).save(
        buffer, format="PNG"
    )
    return buffer.getvalue()


def test_image_to_data_url_downscales_to_jpeg() -> None:
    url = image_to_data_url(_png_bytes(), max_edge=100)

    assert url.startswith("data:image/jpeg;base64,")
    with Image.open(io.BytesIO(base64.b64decode(strip_data_url(url)))) as image:
        assert image.format == "JPEG"
        assert image.size == (100, 50)


def test_image_to_data_url_reads_paths(tmp_path: Path) -> None:
    path = tmp_path / "shelf.png"
    path.write_bytes(_png_bytes((50, 50), mode="RGB"))

    url = image_to_data_url(path, max_edge=None)

    with Image.open(io.BytesIO(base64.b64decode(strip_data_url(url)))) as image:
        assert image.size == (50, 50)


def test_unreadable_image_raises_value_error() -> None:
    with pytest.raises(ValueError):
        image_to_data_url(b"not an image")


def test_strip_data_url() -> None:
    assert strip_data_url("data:image/png;base64,QUJD") == "QUJD"
    assert strip_data_url("QUJD") == "QUJD"
