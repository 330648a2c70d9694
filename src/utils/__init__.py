"""
Shared utilities for EMPORIUM.

This package provides:
- Configuration management
- Secret lookup
"""
from .secrets import get_secret, mask_secret
from .settings import Settings, load_settings

__all__ = ["get_secret", "mask_secret", "Settings", "load_settings"]
