"""Campfire ad review core: versioned ad-unit review, group completion and recipe review."""

__version__ = "0.1.0"
