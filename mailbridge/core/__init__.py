"""Core: config and application bootstrap."""

from mailbridge.core.config import get_settings

__all__ = ["get_settings"]
