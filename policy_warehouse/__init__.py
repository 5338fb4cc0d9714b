"""
policy-warehouse: layered RAW -> STAGING -> CURATED engine for insurance
policy and claims data.
"""

__version__ = "0.1.0"
