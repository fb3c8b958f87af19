"""Utility helpers for logging and common routines."""

from .logger import get_logger, set_verbosity

__all__ = ["get_logger", "set_verbosity"]
