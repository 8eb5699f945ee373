"""Utilities for shared application concerns."""

from recipe_automation import __version__
from recipe_automation.utils.logging import (
    add_request_logging_middleware,
    setup_logging,
)
from recipe_automation.utils.timestamps import as_utc, utc_now

__all__ = [
    "__version__",
    "add_request_logging_middleware",
    "as_utc",
    "setup_logging",
    "utc_now",
]
