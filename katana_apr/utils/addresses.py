from __future__ import annotations

from typing import Optional


def normalize_address(value: Optional[str]) -> str:
    """Canonical comparison form of an address: case-folded, otherwise untouched."""
    if not value:
        return ""
    return str(value).lower()


def addresses_equal(a: Optional[str], b: Optional[str]) -> bool:
    na, nb = normalize_address(a), normalize_address(b)
    return bool(na) and na == nb
