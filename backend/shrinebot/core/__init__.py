"""Core modules for the shrine bot."""

from .logging import setup_logging

__all__ = ["setup_logging"]
