"""
USDZ Conversion Service package.

This module provides a FastAPI application that converts glTF/GLB models to
USDZ with the external `usd_from_gltf` binary. The conversion endpoint is
available at `/api/convert`.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
