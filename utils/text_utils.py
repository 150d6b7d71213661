"""
Text utilities for delivery-area descriptors and product remarks.

Source data mixes full-width and half-width punctuation, so everything is
NFKC-normalized before comparison.
"""

import re
import unicodedata
from typing import Optional

# Separators accepted between region names in a delivery-area string
AREA_SEPARATORS = re.compile(r"[,，。\.、;；/|\-+]+")


def normalize_region_name(name: Optional[str]) -> Optional[str]:
    """
    Normalize a region name for matching.

    - "  城区 " → "城区"
    - "Ｃｉｔｙ" → "City" (full-width folded by NFKC)

    Returns:
        Normalized string, or None if input is empty
    """
    if not name:
        return None

    normalized = unicodedata.normalize("NFKC", name).strip()

    if not normalized:
        return None

    return normalized


def parse_delivery_areas(text: Optional[str]) -> list[str]:
    """
    Split a free-text delivery area into region names.

    "城区,郊区" → ["城区", "郊区"]
    "城区、郊区；城区" → ["城区", "郊区"]

    Duplicates are dropped, first occurrence wins.
    """
    if not text:
        return []

    regions: list[str] = []
    for part in AREA_SEPARATORS.split(text):
        name = normalize_region_name(part)
        if name and name not in regions:
            regions.append(name)
    return regions


def needs_biweekly_boost(remark: Optional[str], phrase: str) -> bool:
    """True when the product remark carries the biweekly-boost marker."""
    if not remark or not phrase:
        return False
    return phrase in unicodedata.normalize("NFKC", remark) or phrase in remark
