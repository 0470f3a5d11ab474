#!/usr/bin/env python3
"""CLI shim for the paid-search ad pipeline."""
from __future__ import annotations

import sys

from advault_scraper.cli import main as cli_main
from advault_scraper.logging import configure_logging, logging_context, set_global_context
from advault_scraper.versioning import get_scraper_version

SCRIPT_NAME = "advault"


def main() -> int:
    configure_logging()
    set_global_context(app="advault_scraper", pipeline=SCRIPT_NAME)
    with logging_context(script=SCRIPT_NAME, scraper_version=get_scraper_version()):
        return cli_main()


if __name__ == "__main__":
    sys.exit(main())
