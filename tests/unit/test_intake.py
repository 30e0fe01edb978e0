import asyncio

import pytest
from unittest.mock import AsyncMock

from airchives.core.exceptions import SegmentationError
from airchives.engines.garment.intake import GarmentIntakeOrchestrator
from airchives.engines.garment.schemas import DetectionResult, SegmentationResult
from airchives.modules.garments.models import GarmentCategory, GarmentStatus


def detection(category="outerwear", confidence=0.9) -> DetectionResult:
    return DetectionResult(category=category, confidence=confidence, raw_label="coat")


def segmentation(detected=True) -> SegmentationResult:
    return SegmentationResult(mask_url="https://fal.test/m.png", confidence=0.92, garment_detected=detected)


@pytest.mark.asyncio
async def test_detection_and_segmentation_run_concurrently():
    # Arrange: each call waits for the other to have started
    detection_started = asyncio.Event()
    segmentation_started = asyncio.Event()

    class Detector:
        async def detect(self, image_url):
            detection_started.set()
            await asyncio.wait_for(segmentation_started.wait(), timeout=1)
            return detection()

    class Segmenter:
        async def segment(self, image_url):
            segmentation_started.set()
            await asyncio.wait_for(detection_started.wait(), timeout=1)
            return segmentation()

    # Act
    outcome = await GarmentIntakeOrchestrator(Detector(), Segmenter()).process("http://test/a.png")

    # Assert
    assert outcome.status == GarmentStatus.SEGMENTED
    assert outcome.category == GarmentCategory.OUTERWEAR
    assert outcome.mask_url == "https://fal.test/m.png"
    assert outcome.error is None


@pytest.mark.asyncio
async def test_segmentation_failure_marks_failed_but_keeps_detection():
    detector = AsyncMock()
    detector.detect.return_value = detection("dress")
    segmenter = AsyncMock()
    segmenter.segment.side_effect = SegmentationError("Segmentation API returned no mask")

    outcome = await GarmentIntakeOrchestrator(detector, segmenter).process("http://test/a.png")

    assert outcome.status == GarmentStatus.FAILED
    assert outcome.category == GarmentCategory.DRESS
    assert outcome.mask_url is None
    assert outcome.error == "Segmentation API returned no mask"
    detector.detect.assert_awaited_once_with("http://test/a.png")


@pytest.mark.asyncio
async def test_raising_detector_is_replaced_by_default():
    detector = AsyncMock()
    detector.detect.side_effect = RuntimeError("classifier down")
    segmenter = AsyncMock()
    segmenter.segment.return_value = segmentation()

    outcome = await GarmentIntakeOrchestrator(detector, segmenter).process("http://test/a.png")

    assert outcome.status == GarmentStatus.SEGMENTED
    assert outcome.category == GarmentCategory.TOP
    assert outcome.detection.is_fallback is True
    assert outcome.detection.confidence == 0.5


@pytest.mark.asyncio
async def test_no_garment_detected_is_a_failure():
    detector = AsyncMock()
    detector.detect.return_value = detection()
    segmenter = AsyncMock()
    segmenter.segment.return_value = segmentation(detected=False)

    outcome = await GarmentIntakeOrchestrator(detector, segmenter).process("http://test/a.png")

    assert outcome.status == GarmentStatus.FAILED
    assert outcome.error == "No garment detected in image"
