"""
Garment Detection

Classifies a garment photo into top/bottom/dress/outerwear via the hosted
image classifier. Failures never propagate: a default result is returned so
intake can still segment and store the garment.
"""

from typing import Optional, Tuple

import httpx

from airchives.core.config import Settings, settings as default_settings
from airchives.core.logging import get_logger
from airchives.core.metrics import record_detection_fallback, track_stage_latency
from airchives.engines.garment.schemas import DetectionResult, DEFAULT_BOUNDING_BOX

logger = get_logger(__name__)

CLASSIFIER_CATEGORIES = ["clothing", "fashion", "apparel"]

# Checked in order; the first matching rule wins
CATEGORY_RULES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("dress", ("dress", "gown")),
    ("outerwear", ("jacket", "coat", "blazer")),
    ("bottom", ("pants", "skirt", "shorts")),
)
DEFAULT_CATEGORY = "top"
FALLBACK_CONFIDENCE = 0.5


def map_label_to_category(label: Optional[str]) -> str:
    """Map a raw classifier label onto the closed category set."""
    lowered = (label or "").lower()
    for category, keywords in CATEGORY_RULES:
        if any(keyword in lowered for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def default_detection() -> DetectionResult:
    return DetectionResult(
        category=DEFAULT_CATEGORY,
        confidence=FALLBACK_CONFIDENCE,
        bounding_box=dict(DEFAULT_BOUNDING_BOX),
        is_fallback=True
    )


class DetectionModule:
    """Hosted image classifier client."""

    def __init__(self, config: Settings = default_settings, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

    @property
    def endpoint(self) -> str:
        return f"{self.config.FAL_API_URL.rstrip('/')}/v1/models/fal-ai/image-classification"

    async def detect(self, image_url: str) -> DetectionResult:
        try:
            with track_stage_latency("detection"):
                return await self._classify(image_url)
        except Exception as e:
            reason = type(e).__name__
            logger.warning("detection_fallback_used", image_url=image_url, reason=reason, error=str(e))
            record_detection_fallback(reason)
            return default_detection()

    async def _classify(self, image_url: str) -> DetectionResult:
        if not self.config.FAL_API_KEY:
            raise RuntimeError("FAL_API_KEY is not configured for detection")

        payload = {
            "image_url": image_url,
            "model_name": self.config.CLASSIFIER_MODEL_NAME,
            "categories": CLASSIFIER_CATEGORIES,
        }
        headers = {
            "Authorization": f"Key {self.config.FAL_API_KEY}",
            "Content-Type": "application/json",
        }

        if self._client is not None:
            response = await self._client.post(
                self.endpoint, json=payload, headers=headers, timeout=self.config.INTAKE_TIMEOUT_SECONDS
            )
        else:
            async with httpx.AsyncClient(timeout=self.config.INTAKE_TIMEOUT_SECONDS) as client:
                response = await client.post(self.endpoint, json=payload, headers=headers)

        response.raise_for_status()
        result = response.json()

        label = result.get("label")
        detection = DetectionResult(
            category=map_label_to_category(label),
            confidence=float(result.get("confidence", FALLBACK_CONFIDENCE)),
            bounding_box=result.get("bounding_box") or dict(DEFAULT_BOUNDING_BOX),
            raw_label=label
        )
        logger.info(
            "detection_completed",
            label=label,
            category=detection.category,
            confidence=detection.confidence
        )
        return detection
