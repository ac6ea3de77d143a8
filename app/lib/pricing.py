# app/lib/pricing.py
from app.config import Config


def library_price_cents(cfg: Config, page_count: int) -> int:
    """Flat base price up to the page limit, plus a fixed increment per extra page."""
    if page_count <= 0:
        return 0
    extra = max(0, page_count - cfg.library_base_page_limit)
    return cfg.library_base_price_cents + extra * cfg.library_extra_page_cents


def order_price_cents(cfg: Config, price_tier: str = "standard") -> int:
    if price_tier == "premium":
        return cfg.premium_order_price_cents
    return cfg.order_price_cents


def credit_pack_price_cents(cfg: Config, credits: int) -> int:
    try:
        return cfg.credit_packs[credits]
    except KeyError:
        raise ValueError(f"unknown credit pack: {credits} (available: {sorted(cfg.credit_packs)})")
