"""Content hashing and PNG inspection utilities."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, UnidentifiedImageError


@dataclass(frozen=True, slots=True)
class PngInfo:
    sha256: str
    width: int
    height: int
    size: int


def ad_fingerprint(advertiser_domain: str, title: str, url: str | None) -> str:
    """Stable ad id: the same creative seen on two SERPs maps to one ``ads`` row."""

    key = "|".join((advertiser_domain.lower(), title.strip(), url or ""))
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def inspect_png(png_bytes: bytes) -> PngInfo:
    """Verify that ``png_bytes`` is a decodable PNG and return its digest and size.

    Raises ``ValueError`` when the payload is empty, not an image, or an image
    in another format.
    """

    if not png_bytes:
        raise ValueError("empty image payload")
    try:
        with Image.open(BytesIO(png_bytes)) as im:
            fmt = im.format
            width, height = im.size
            im.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise ValueError(f"not a decodable image: {exc}") from exc
    if fmt != "PNG":
        raise ValueError(f"expected PNG, got {fmt}")
    return PngInfo(
        sha256=hashlib.sha256(png_bytes).hexdigest(),
        width=width,
        height=height,
        size=len(png_bytes),
    )


__all__ = ["PngInfo", "ad_fingerprint", "inspect_png"]
