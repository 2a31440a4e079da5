"""Configuration and prompt templates."""

from .settings import Settings, StorageBackend, get_settings

__all__ = ["Settings", "StorageBackend", "get_settings"]
