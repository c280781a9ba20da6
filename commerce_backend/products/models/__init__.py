"""
PATH: products/models/__init__.py

Products models export surface.
"""

from .product import (
    TIER_BASIC,
    TIER_CHOICES,
    TIER_FREE,
    TIER_PREMIUM,
    Product,
    TierSpec,
    normalize_tier_table,
)

__all__ = [
    "Product",
    "TierSpec",
    "normalize_tier_table",
    "TIER_CHOICES",
    "TIER_FREE",
    "TIER_BASIC",
    "TIER_PREMIUM",
]
