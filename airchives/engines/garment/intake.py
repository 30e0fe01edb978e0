"""
Garment Intake Orchestrator

Runs detection and segmentation concurrently for one uploaded image and merges
both outcomes. Neither call short-circuits the other: detection substitutes a
default on failure, segmentation failure marks the garment FAILED.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from airchives.core.logging import get_logger
from airchives.core.metrics import record_garment_intake
from airchives.engines.garment.detection import DetectionModule, default_detection
from airchives.engines.garment.schemas import DetectionResult, SegmentationResult
from airchives.engines.garment.segmentation import SegmentationModule
from airchives.modules.garments.models import GarmentCategory, GarmentStatus

logger = get_logger(__name__)


@dataclass
class IntakeOutcome:
    detection: DetectionResult
    segmentation: Optional[SegmentationResult] = None
    error: Optional[str] = None

    @property
    def category(self) -> GarmentCategory:
        return GarmentCategory(self.detection.category.upper())

    @property
    def status(self) -> GarmentStatus:
        if self.segmentation is not None and self.segmentation.garment_detected:
            return GarmentStatus.SEGMENTED
        return GarmentStatus.FAILED

    @property
    def mask_url(self) -> Optional[str]:
        return self.segmentation.mask_url if self.segmentation else None


class GarmentIntakeOrchestrator:
    def __init__(
        self,
        detector: Optional[DetectionModule] = None,
        segmenter: Optional[SegmentationModule] = None
    ):
        self.detector = detector or DetectionModule()
        self.segmenter = segmenter or SegmentationModule()

    async def process(self, image_url: str) -> IntakeOutcome:
        detection, segmentation = await asyncio.gather(
            self.detector.detect(image_url),
            self.segmenter.segment(image_url),
            return_exceptions=True
        )

        if isinstance(detection, BaseException):
            # DetectionModule already falls back; this covers replaced detectors
            logger.warning("detection_raised", error=str(detection), error_type=type(detection).__name__)
            detection = default_detection()

        outcome = IntakeOutcome(detection=detection)
        if isinstance(segmentation, BaseException):
            outcome.error = str(segmentation) or type(segmentation).__name__
            logger.warning(
                "segmentation_failed",
                error=outcome.error,
                error_type=type(segmentation).__name__
            )
        else:
            outcome.segmentation = segmentation
            if not segmentation.garment_detected:
                outcome.error = "No garment detected in image"

        record_garment_intake(outcome.status.value, outcome.category.value)
        logger.info(
            "garment_intake_completed",
            status=outcome.status.value,
            category=outcome.category.value,
            detection_fallback=detection.is_fallback
        )
        return outcome
