"""
Central configuration — reads from .env file.

API keys are NOT read here: they go through key_store.py
(database first, then environment), so a key changed at runtime
takes effect on the next collaborator call.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# ── Storage ───────────────────────────────────────────────────────────────────
# SQLite file (durable cache tier, API keys, search logs) and the log file
# both live here so a single volume mount captures them.
DATA_DIR: str = os.getenv("DATA_DIR", "data")

# ── Retailer scraping service ─────────────────────────────────────────────────
# The scraping service does the per-retailer work and answers with one
# combined payload: products + scrapedRetailers + failedRetailers.
SCRAPER_BASE_URL: str = os.getenv("SCRAPER_BASE_URL", "http://localhost:5000").rstrip("/")
SCRAPER_SEARCH_PATH: str = os.getenv("SCRAPER_SEARCH_PATH", "/api/price-comparison/search")

# Optional second endpoint (browser-based scraping) tried when the primary
# endpoint fails or finds nothing. Empty = disabled.
SCRAPER_FALLBACK_PATH: str = os.getenv("SCRAPER_FALLBACK_PATH", "").strip()

# Scraping every retailer can take a while; the frontend waited 2 minutes.
SCRAPER_TIMEOUT: float = float(os.getenv("SCRAPER_TIMEOUT", "120"))

# ── AI identification ─────────────────────────────────────────────────────────
#   best      → run all providers in parallel, pick highest-quality result (default)
#   cheapest  → always use the cheapest available provider
#   single:groq/meta-llama/llama-4-scout-17b-16e-instruct → force one provider
IDENTIFY_MODE: str = os.getenv("IDENTIFY_MODE", "best")

# ── Offer normalization ───────────────────────────────────────────────────────
DEFAULT_PRODUCT_NAME: str = os.getenv("DEFAULT_PRODUCT_NAME", "Unknown Product")
# {vendor} is replaced by the lower-cased vendor name with whitespace removed
VENDOR_LOGO_TEMPLATE: str = os.getenv("VENDOR_LOGO_TEMPLATE", "https://logo.clearbit.com/{vendor}.com")
FALLBACK_LOGO_URL: str = os.getenv("FALLBACK_LOGO_URL", "https://via.placeholder.com/50x20?text=Logo")
FALLBACK_IMAGE_URL: str = os.getenv("FALLBACK_IMAGE_URL", "https://via.placeholder.com/300?text=No+Image")

# ── Session cache ─────────────────────────────────────────────────────────────
RECENTLY_VIEWED_LIMIT: int = int(os.getenv("RECENTLY_VIEWED_LIMIT", "10"))

# Record every successful search in the search_logs table
LOG_SEARCHES: bool = os.getenv("LOG_SEARCHES", "true").lower() == "true"
