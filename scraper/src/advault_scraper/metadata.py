"""Metadata helpers for rendering uploads."""

from __future__ import annotations

from collections import OrderedDict
from typing import OrderedDict as OrderedDictType


def build_rendering_metadata(
    *,
    ad_id: str,
    serp_id: str,
    rendering_id: str,
    rendering_type: str,
    sha256: str,
    width: int | None,
    height: int | None,
    scraper_version: str,
    source_url: str | None = None,
) -> OrderedDictType[str, str]:
    """Return metadata with deterministic ordering for auditability."""

    md: OrderedDictType[str, str] = OrderedDict()
    md["ad_id"] = ad_id
    md["serp_id"] = serp_id
    md["rendering_id"] = rendering_id
    md["rendering_type"] = rendering_type
    md["sha256"] = sha256
    if width:
        md["width"] = str(width)
    if height:
        md["height"] = str(height)
    md["scraper_version"] = scraper_version
    if source_url:
        md["source_url"] = source_url
    return md


__all__ = ["build_rendering_metadata"]
