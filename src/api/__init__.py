"""
EMPORIUM REST API.

FastAPI-based REST API for the marketplace authentication core.
"""
from .main import create_app

__all__ = ["create_app"]
