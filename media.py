from __future__ import annotations

import base64
import io
import re
from pathlib import Path
from typing import Optional, Union

from PIL import Image, UnidentifiedImageError

DATA_URL_PREFIX = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")
DEFAULT_MAX_EDGE = 1024

ImageSource = Union[bytes, str, Path]


def strip_data_url(value: str) -> str:
    """Return the bare base64 payload of a data URL (unchanged if already bare)."""
    return DATA_URL_PREFIX.sub("", value or "", count=1)


def _open(source: ImageSource) -> Image.Image:
    if isinstance(source, bytes):
        return Image.open(io.BytesIO(source))
    return Image.open(Path(source))


def image_to_data_url(
    source: ImageSource,
    max_edge: Optional[int] = DEFAULT_MAX_EDGE,
    *,
    quality: int = 85,
) -> str:
    """Downscale an image and encode it as a JPEG data URL.

    Used for location photos and for the payload of an AI cover scan.
    Raises ``ValueError`` when the source is not a readable image.
    """
    try:
        with _open(source) as image:
            image.load()
            if max_edge:
                image.thumbnail((max_edge, max_edge), Image.LANCZOS)
            if image.mode != "RGB":
                image = image.convert("RGB")
            buffer = io.BytesIO()
            image.save(buffer, format="JPEG", quality=quality)
    except (UnidentifiedImageError, OSError) as error:
        raise ValueError(f"Unreadable image: {error}") from error

    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}"
