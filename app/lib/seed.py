# app/lib/seed.py
import hashlib

SEED_MASK = 0x7FFFFFFF  # positive signed 32-bit


def page_seed(order_id: str, page_number: int) -> int:
    """
    Deterministic seed for (order, page): first 32 bits of sha256("<order>-<page>"),
    masked into the positive signed 32-bit range so it fits an INTEGER column.
    """
    digest = hashlib.sha256(f"{order_id}-{page_number}".encode("utf-8")).hexdigest()
    return int(digest[:8], 16) & SEED_MASK


def perturb_seed(seed: int, offset: int) -> int:
    """Next seed for a retry: fixed additive offset, wrapped into the valid range."""
    return (seed + offset) & SEED_MASK
