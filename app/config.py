# app/config.py
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

def _env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}

def _env_csv(name: str, default: str = "*") -> List[str]:
    raw = os.getenv(name, default)
    return [x.strip() for x in raw.split(",") if x.strip()]

def _env_int_map(name: str, default: str) -> Dict[int, int]:
    """
    Parse "10:500,20:800" -> {10: 500, 20: 800}.
    """
    out: Dict[int, int] = {}
    for item in _env_csv(name, default):
        key, _, value = item.partition(":")
        out[int(key)] = int(value)
    return out

@dataclass(frozen=True)
class Config:
    # OpenAI
    openai_api_key: str
    openai_image_model: str
    image_size: str  # valid: 1024x1024, 1024x1536, 1536x1024, auto
    ai_model_manifest: str   # low complexity tier
    ai_model_complex: str    # high complexity tier
    # API / CORS
    allowed_origins: List[str]
    # Output handling
    base_output_dir: Path
    # Logging
    log_level: str
    # Storage
    database_url: str
    gcs_bucket: str
    signed_url_ttl: int
    public_base_url: str
    site_url: str

    # Cloud Tasks / GCP
    gcp_project: str
    gcp_location: str
    tasks_queue: str

    # Stripe
    stripe_secret_key: str
    stripe_webhook_secret: str

    # Pipeline shape
    page_count: int
    preview_count: int
    page_sleep_seconds: int                 # pause between pages (image provider rate limit)
    step_max_retries: int                   # transient retries per checkpointed step
    step_retry_delay: float

    # Quality gate policy (1-5 scale)
    max_quality_retries: int                # extra attempts after the first
    seed_retry_offset: int
    quality_min_line_art: int
    quality_min_background: int
    quality_min_anatomy: int
    quality_min_composition: int
    quality_hard_floor_line_art: int        # line art at or below this after the last attempt is a hard failure
    quality_gate_fail_open: bool            # evaluator outage -> cautious pass

    # Pricing / credits
    order_price_cents: int
    premium_order_price_cents: int
    library_base_price_cents: int
    library_base_page_limit: int
    library_extra_page_cents: int
    purchase_bonus_credits: int
    regenerate_cost_credits: int
    credit_packs: Dict[int, int]            # credits -> price in cents
    currency: str

def load_config() -> Config:
    base_output_dir = Path(__file__).resolve().parent / "output"
    return Config(
        openai_api_key = os.getenv("OPENAI_API_KEY", ""),
        openai_image_model = os.getenv("OPENAI_IMAGE_MODEL", "gpt-image-1"),
        image_size = os.getenv("IMAGE_SIZE", "1024x1024"),
        ai_model_manifest = os.getenv("AI_MODEL_MANIFEST", "gpt-4o-mini"),
        ai_model_complex = os.getenv("AI_MODEL_COMPLEX", "gpt-4o"),
        allowed_origins = _env_csv("ALLOWED_ORIGINS", "*"),
        base_output_dir = base_output_dir,
        log_level = os.getenv("LOG_LEVEL", "DEBUG"),
        database_url = os.getenv("DATABASE_URL", f"sqlite:///{base_output_dir / 'coloring_book.db'}"),
        gcs_bucket = os.getenv("GCS_BUCKET", "coloring-books-assets"),
        signed_url_ttl = int(os.getenv("GCS_SIGNED_URL_TTL", "3600")),
        public_base_url = os.getenv("BASE_URL", "http://localhost:8080"),
        site_url = os.getenv("SITE_URL", "http://localhost:3000"),
        gcp_location = os.getenv("REGION", "us-central1"),
        gcp_project = os.getenv("PROJECT_ID", "coloring-books"),
        tasks_queue = os.getenv("TASKS_QUEUE", "coloring-book-worker-queue"),
        stripe_secret_key = os.getenv("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET", ""),
        page_count = int(os.getenv("PAGE_COUNT", "3")),
        preview_count = int(os.getenv("PREVIEW_COUNT", "3")),
        page_sleep_seconds = int(os.getenv("PAGE_SLEEP_SECONDS", "5")),
        step_max_retries = int(os.getenv("STEP_MAX_RETRIES", "3")),
        step_retry_delay = float(os.getenv("STEP_RETRY_DELAY", "2.0")),
        max_quality_retries = int(os.getenv("MAX_QUALITY_RETRIES", "2")),
        seed_retry_offset = int(os.getenv("SEED_RETRY_OFFSET", "7919")),
        quality_min_line_art = int(os.getenv("QUALITY_MIN_LINE_ART", "4")),
        quality_min_background = int(os.getenv("QUALITY_MIN_BACKGROUND", "3")),
        quality_min_anatomy = int(os.getenv("QUALITY_MIN_ANATOMY", "3")),
        quality_min_composition = int(os.getenv("QUALITY_MIN_COMPOSITION", "3")),
        quality_hard_floor_line_art = int(os.getenv("QUALITY_HARD_FLOOR_LINE_ART", "2")),
        quality_gate_fail_open = _env_bool("QUALITY_GATE_FAIL_OPEN", True),
        order_price_cents = int(os.getenv("ORDER_PRICE_CENTS", "1200")),
        premium_order_price_cents = int(os.getenv("PREMIUM_ORDER_PRICE_CENTS", "1900")),
        library_base_price_cents = int(os.getenv("LIBRARY_BASE_PRICE_CENTS", "500")),
        library_base_page_limit = int(os.getenv("LIBRARY_BASE_PAGE_LIMIT", "10")),
        library_extra_page_cents = int(os.getenv("LIBRARY_EXTRA_PAGE_CENTS", "50")),
        purchase_bonus_credits = int(os.getenv("PURCHASE_BONUS_CREDITS", "5")),
        regenerate_cost_credits = int(os.getenv("REGENERATE_COST_CREDITS", "1")),
        credit_packs = _env_int_map("CREDIT_PACKS", "10:500,20:800,50:1800"),
        currency = os.getenv("CURRENCY", "usd"),
    )

# Load once and ensure output directory exists
config = load_config()
config.base_output_dir.mkdir(parents=True, exist_ok=True)
