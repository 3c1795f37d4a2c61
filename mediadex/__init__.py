"""Mediadex -- local-network media browser with fuzzy file-name search."""

from mediadex.library import (
    ALLOWED_EXTENSIONS,
    LibraryConfig,
    MediaLibrary,
    MediadexError,
    RootUnavailable,
)
from mediadex.matcher import FALLBACK_ALL, FALLBACK_NEAREST, find, normalize

__version__ = "0.1.0"

__all__ = [
    "ALLOWED_EXTENSIONS",
    "FALLBACK_ALL",
    "FALLBACK_NEAREST",
    "LibraryConfig",
    "MediaLibrary",
    "MediadexError",
    "RootUnavailable",
    "find",
    "normalize",
]
