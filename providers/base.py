"""
Shared types and base class for all identification providers.

A provider turns a photo, a barcode or a free-text description into a
product description plus the keyword string we hand to retailer search.
"""
from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Union

logger = logging.getLogger(__name__)

# ── Prompts (shared across all providers) ─────────────────────────────────────

SYSTEM_PROMPT = """You are an expert product identification assistant for an Indian price-comparison site.
Return ONLY a valid JSON object — no markdown, no prose.

JSON schema (all fields required unless marked optional):
{
  "product":     "concise name — brand + model if visible",
  "brand":       "brand name or empty string",
  "category":    "product category (e.g. Smartphone, Kitchen Appliance)",
  "features":    ["up to 5 most distinctive features"],
  "keywords":    ["up to 5 search keywords, most specific first"],
  "confidence":  "high | medium | low",
  "notes":       "brief note on identification quality"
}

Rules:
- If the product cannot be identified, set "product" to "Unknown product"
- Include the model number in keywords when visible
- If the brand is unknown, leave it empty rather than guessing
"""

IMAGE_PROMPT = (
    "Identify the product in this photo and return the JSON. "
    "Focus on what a shopper would type to find this exact item at an online retailer."
)


def barcode_prompt(code: str) -> str:
    return (
        f"A shopper scanned the barcode {code} (EAN/UPC). "
        "Identify the product it most likely belongs to and return the JSON."
    )


# ── Payloads ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ImagePayload:
    data: bytes


@dataclass(frozen=True)
class BarcodePayload:
    code: str


Payload = Union[ImagePayload, BarcodePayload]


# ── Results ───────────────────────────────────────────────────────────────────

UNKNOWN_PRODUCT = "Unknown product"


@dataclass
class ProviderResult:
    """Result from a single identification provider."""
    provider_name: str          # e.g. "groq/meta-llama/llama-4-scout-17b-16e-instruct"
    model_id: str
    product_name: str
    brand: str
    category: str
    features: list[str]
    keywords: list[str]
    confidence: str             # high | medium | low
    notes: str
    latency_ms: int
    input_tokens: int
    output_tokens: int
    cost_usd: float

    # internal quality score for ranking (higher = better)
    quality_score: float = field(init=False)

    def __post_init__(self) -> None:
        # Score = confidence weight × completeness
        conf_weight = {"high": 1.0, "medium": 0.6, "low": 0.2}.get(self.confidence, 0.3)
        completeness = (
            (1 if self.identified else 0)
            + (1 if self.brand else 0)
            + (0.5 * min(len(self.features), 5) / 5)
            + (1 if self.keywords else 0)
        )
        self.quality_score = conf_weight * completeness

    @property
    def identified(self) -> bool:
        return bool(self.product_name) and self.product_name != UNKNOWN_PRODUCT

    @property
    def search_string(self) -> str:
        """product + brand + first three keywords, de-duplicated, in that order."""
        parts: list[str] = []
        for part in [self.product_name, self.brand, *self.keywords[:3]]:
            part = (part or "").strip()
            if part and part.lower() not in (p.lower() for p in parts):
                parts.append(part)
        return " ".join(parts)


@dataclass
class IdentifyResult:
    """What the identification collaborator hands back to the orchestrator."""
    success: bool
    keywords: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None
    product_name: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    provider_name: Optional[str] = None

    @classmethod
    def failed(cls, error: str, code: str = "UNKNOWN_ERROR") -> "IdentifyResult":
        return cls(success=False, error=error, code=code)

    @classmethod
    def from_provider(cls, result: ProviderResult) -> "IdentifyResult":
        if not result.identified:
            return cls.failed(
                "Could not identify a product. Try a clearer photo or type the product name.",
                code="NO_PRODUCT_DETECTED",
            )
        return cls(
            success=True,
            keywords=result.search_string,
            product_name=result.product_name,
            brand=result.brand or None,
            category=result.category or None,
            provider_name=result.provider_name,
        )


# ── Response parsing ──────────────────────────────────────────────────────────

_FENCED = re.compile(r"```(?:json)?\s*\n(.*?)\n\s*```", re.DOTALL)
_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def parse_json_response(raw: str, provider_name: str) -> dict:
    """
    Parse JSON from a model response, handling markdown fences and
    chatter around the object. Raises ValueError on parse failure.
    """
    text = raw.strip()
    m = _FENCED.search(text) or _OBJECT.search(text)
    if m:
        text = m.group(1) if m.re is _FENCED else m.group(0)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.error("[%s] Non-JSON response: %s", provider_name, raw[:300])
        raise ValueError(f"[{provider_name}] JSON parse error: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"[{provider_name}] expected a JSON object, got {type(data).__name__}")
    return data


def _as_list(value) -> list[str]:
    if isinstance(value, str):
        return [v.strip() for v in re.split(r"[,;]", value) if v.strip()]
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return []


def normalize_product_data(data: dict) -> dict:
    """Fold the field names models actually use onto our schema."""
    product = data.get("product") or data.get("product_name") or data.get("name") or data.get("title")
    brand = data.get("brand") or data.get("manufacturer") or ""
    category = data.get("category") or data.get("productCategory") or data.get("type") or ""
    features = _as_list(data.get("features") or data.get("key_features") or data.get("keyFeatures"))

    keywords = _as_list(data.get("keywords") or data.get("search_terms"))
    if not keywords:
        keywords = [k for k in (product, brand, category) if k]

    unique: list[str] = []
    for k in keywords:
        if k not in unique:
            unique.append(k)

    return {
        "product": str(product or UNKNOWN_PRODUCT).strip(),
        "brand": str(brand).strip(),
        "category": str(category).strip(),
        "features": features,
        "keywords": unique,
        "confidence": data.get("confidence", "medium"),
        "notes": data.get("notes", ""),
    }


# ── Abstract base ─────────────────────────────────────────────────────────────

class IdentificationProvider(ABC):
    """Base class all identification providers must implement."""

    name: str           # e.g. "groq"
    model_id: str       # e.g. "meta-llama/llama-4-scout-17b-16e-instruct"
    cost_per_1k_input_tokens: float
    cost_per_1k_output_tokens: float
    # Extra per-image cost for vision input
    cost_per_image: float = 0.0

    @abstractmethod
    async def analyse_image(self, image_bytes: bytes) -> ProviderResult:
        """Run vision inference on image_bytes."""
        ...

    @abstractmethod
    async def analyse_text(self, prompt: str) -> ProviderResult:
        """Run a text-only identification (barcode lookup)."""
        ...

    async def analyse(self, payload: Payload) -> ProviderResult:
        if isinstance(payload, ImagePayload):
            return await self.analyse_image(payload.data)
        if isinstance(payload, BarcodePayload):
            return await self.analyse_text(barcode_prompt(payload.code))
        raise TypeError(f"Unsupported payload: {type(payload).__name__}")

    @property
    def full_name(self) -> str:
        return f"{self.name}/{self.model_id}"

    def estimate_cost(self, input_tokens: int, output_tokens: int, images: int = 0) -> float:
        return (
            self.cost_per_image * images
            + input_tokens / 1000 * self.cost_per_1k_input_tokens
            + output_tokens / 1000 * self.cost_per_1k_output_tokens
        )

    def build_result(
        self,
        raw: str,
        latency_ms: int,
        input_tokens: int,
        output_tokens: int,
        images: int = 0,
    ) -> ProviderResult:
        data = normalize_product_data(parse_json_response(raw, self.full_name))
        return ProviderResult(
            provider_name=self.full_name,
            model_id=self.model_id,
            product_name=data["product"],
            brand=data["brand"],
            category=data["category"],
            features=data["features"],
            keywords=data["keywords"],
            confidence=data["confidence"],
            notes=data["notes"],
            latency_ms=latency_ms,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=self.estimate_cost(input_tokens, output_tokens, images),
        )


def detect_media_type(image_bytes: bytes) -> str:
    """Sniff the image format from magic bytes (default jpeg)."""
    if image_bytes[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if image_bytes[:4] == b"GIF8":
        return "image/gif"
    if image_bytes[:4] == b"RIFF":
        return "image/webp"
    return "image/jpeg"
