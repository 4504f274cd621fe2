"""Package version lookup."""

from __future__ import annotations

import logging
from importlib.metadata import PackageNotFoundError, version

LOGGER = logging.getLogger(__name__)

FALLBACK_VERSION = "0.1.4"


def get_version() -> str:
    try:
        return version("vitrus")
    except PackageNotFoundError:
        LOGGER.debug("Package metadata unavailable, using fallback version %s", FALLBACK_VERSION)
        return FALLBACK_VERSION


__version__ = get_version()
