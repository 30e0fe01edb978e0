"""
Garment Segmentation

Requests a cut-out mask from the hosted SAM2 model. A missing mask blocks
generation downstream, so every failure here raises SegmentationError.
"""

from typing import Optional

import httpx

from airchives.core.config import Settings, settings as default_settings
from airchives.core.exceptions import SegmentationError
from airchives.core.logging import get_logger
from airchives.core.metrics import track_stage_latency
from airchives.engines.garment.schemas import SegmentationResult

logger = get_logger(__name__)

DEFAULT_SEGMENTATION_CONFIDENCE = 0.8


class SegmentationModule:
    """Hosted segmentation model client."""

    def __init__(self, config: Settings = default_settings, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

    @property
    def endpoint(self) -> str:
        return f"{self.config.FAL_API_URL.rstrip('/')}/v1/models/fal-ai/image-segmentation"

    async def segment(self, image_url: str) -> SegmentationResult:
        if not self.config.FAL_API_KEY:
            raise SegmentationError("FAL_API_KEY is not configured; cannot segment garment")

        payload = {
            "image_url": image_url,
            "model_type": "sam2",
            "confidence_threshold": self.config.SEGMENTATION_CONFIDENCE_THRESHOLD,
        }
        headers = {
            "Authorization": f"Key {self.config.FAL_API_KEY}",
            "Content-Type": "application/json",
        }

        with track_stage_latency("segmentation"):
            try:
                if self._client is not None:
                    response = await self._client.post(
                        self.endpoint, json=payload, headers=headers, timeout=self.config.INTAKE_TIMEOUT_SECONDS
                    )
                else:
                    async with httpx.AsyncClient(timeout=self.config.INTAKE_TIMEOUT_SECONDS) as client:
                        response = await client.post(self.endpoint, json=payload, headers=headers)
            except httpx.TimeoutException as e:
                raise SegmentationError(
                    f"Segmentation timed out after {self.config.INTAKE_TIMEOUT_SECONDS:g}s"
                ) from e
            except httpx.HTTPError as e:
                raise SegmentationError(f"Segmentation request failed: {e}") from e

            if response.status_code != 200:
                raise SegmentationError(
                    f"Segmentation API error: {response.text}",
                    http_status=response.status_code
                )

            try:
                result = response.json()
            except ValueError as e:
                raise SegmentationError("Segmentation API returned a non-JSON body") from e

        output = result.get("output")
        if not isinstance(output, dict):
            output = {}
        mask_url = result.get("mask_url") or output.get("mask_url")
        if not mask_url:
            raise SegmentationError("Segmentation API returned no mask")

        segmentation = SegmentationResult(
            mask_url=mask_url,
            confidence=float(result.get("confidence", DEFAULT_SEGMENTATION_CONFIDENCE)),
            garment_detected=bool(result.get("detected", True))
        )
        logger.info(
            "segmentation_completed",
            confidence=segmentation.confidence,
            garment_detected=segmentation.garment_detected
        )
        return segmentation
