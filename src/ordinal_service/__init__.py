"""
Ordinal Conversion Service package.

This module provides a FastAPI application that stages uploaded videos and
images, runs the external ordinal converter on them, and serves the
resulting GIF/WEBP files under `/ordinal/`.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
