"""Manifold - manifest resolution and recipe compilation for AI coding tools."""

__version__ = "0.4.0"
