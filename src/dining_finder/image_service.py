"""Representative food photos for ranked halls."""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import quote

UNSPLASH_FEATURED_URL = "https://source.unsplash.com/featured/400x300/"
NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")


def food_image_url(food_name: Optional[str]) -> Optional[str]:
    """Build an Unsplash featured-image URL from the first three words of a dish name."""
    if not food_name:
        return None
    clean = NON_ALNUM_RE.sub("", food_name.lower()).split()[:3]
    if not clean:
        return None
    return f"{UNSPLASH_FEATURED_URL}?{quote(' '.join(clean))},food,meal"


def food_image_with_fallback(food_name: Optional[str], hall_name: Optional[str] = None) -> Optional[str]:
    if food_name:
        return food_image_url(food_name)
    if hall_name:
        return food_image_url(hall_name)
    return None
