"""Scraper version resolution helpers."""

from __future__ import annotations

import os

SCRAPER_NAME = "advault"
SCRAPER_VERSION = "1.0.0"


def get_scraper_version(script_name: str = SCRAPER_NAME, script_version: str = SCRAPER_VERSION) -> str:
    """Return a ``name:version`` string, overridable with ``ADVAULT_SCRAPER_VERSION``."""

    return os.getenv("ADVAULT_SCRAPER_VERSION", f"{script_name}:{script_version}")


__all__ = ["SCRAPER_NAME", "SCRAPER_VERSION", "get_scraper_version"]
