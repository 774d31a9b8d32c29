"""Curriculum reference data (standards)."""

from .standards import Standard, StandardsCatalog

__all__ = [
    "Standard",
    "StandardsCatalog",
]
