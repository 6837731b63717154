"""HTTP surface for site backup downloads and restores."""
from __future__ import annotations

__version__ = "1.7.0"

__all__ = ["__version__"]
