"""
STAGING -> CURATED aggregation.
"""

from .aggregator import CuratedAggregator
from .definitions import CURATED_TABLES, CuratedDefinition, latest_by_key

__all__ = [
    "CURATED_TABLES",
    "CuratedAggregator",
    "CuratedDefinition",
    "latest_by_key",
]
