"""
Landing -> RAW ingestion.
"""

from .loader import IngestionLoader, IngestionSummary
from .reader import DelimitedReader, ParsedRow

__all__ = [
    "DelimitedReader",
    "IngestionLoader",
    "IngestionSummary",
    "ParsedRow",
]
