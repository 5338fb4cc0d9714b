"""
Object landing store access.
"""

from .base import LandedObject, LandingStore
from .local import LocalLandingStore

__all__ = [
    "LandedObject",
    "LandingStore",
    "LocalLandingStore",
]
