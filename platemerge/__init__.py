"""Merge per-plate single-cell count matrices into one annotated matrix."""

__version__ = "0.1.0"
