"""
Incremental change tracking.
"""

from .watermarks import WatermarkTracker, watermark_lock_name

__all__ = [
    "WatermarkTracker",
    "watermark_lock_name",
]
