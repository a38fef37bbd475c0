"""Resolve record-collection tracks to identifiers in a search index."""

from importlib import metadata

try:
    __version__ = metadata.version("cratematch")
except metadata.PackageNotFoundError:  # pragma: no cover - running from a source checkout
    __version__ = "0.0.0"

__all__ = ["__version__"]
