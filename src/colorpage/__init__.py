"""Coloring Page Studio - photos to printable coloring pages."""

__version__ = "0.1.0"

from colorpage.core.config import ColorPageConfig, config

__all__ = [
    "ColorPageConfig",
    "config",
]
