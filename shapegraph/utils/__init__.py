"""Shared helpers for shapegraph."""

from shapegraph.utils.logging import MultilineFormatter, setup_logging

__all__ = ["MultilineFormatter", "setup_logging"]
