"""Shared helpers"""

from .logging import setup_logging, ColoredFormatter

__all__ = ["setup_logging", "ColoredFormatter"]
