import json

import httpx
import pytest

from airchives.core.exceptions import SegmentationError
from airchives.engines.garment.segmentation import SegmentationModule

from tests.conftest import make_settings, mock_client


def segmenter(handler, **overrides) -> SegmentationModule:
    config = make_settings(FAL_API_KEY="k-1", **overrides)
    return SegmentationModule(config, client=mock_client(handler))


@pytest.mark.asyncio
async def test_segment_returns_mask():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"mask_url": "https://fal.test/m.png", "confidence": 0.95, "detected": True})

    result = await segmenter(handler, SEGMENTATION_CONFIDENCE_THRESHOLD=0.6).segment("http://test/a.png")

    assert result.mask_url == "https://fal.test/m.png"
    assert result.confidence == 0.95
    assert result.garment_detected is True
    assert captured["body"] == {
        "image_url": "http://test/a.png",
        "model_type": "sam2",
        "confidence_threshold": 0.6
    }


@pytest.mark.asyncio
async def test_segment_reads_nested_output_and_defaults():
    handler = lambda request: httpx.Response(200, json={"output": {"mask_url": "https://fal.test/n.png"}})

    result = await segmenter(handler).segment("http://test/a.png")

    assert result.mask_url == "https://fal.test/n.png"
    assert result.confidence == 0.8
    assert result.garment_detected is True


@pytest.mark.asyncio
async def test_segment_reports_no_garment():
    handler = lambda request: httpx.Response(200, json={"mask_url": "https://fal.test/m.png", "detected": False})

    result = await segmenter(handler).segment("http://test/a.png")

    assert result.garment_detected is False


@pytest.mark.asyncio
async def test_missing_mask_raises():
    handler = lambda request: httpx.Response(200, json={"confidence": 0.9})

    with pytest.raises(SegmentationError, match="no mask"):
        await segmenter(handler).segment("http://test/a.png")


@pytest.mark.asyncio
async def test_non_200_raises_with_status():
    handler = lambda request: httpx.Response(422, text="bad image")

    with pytest.raises(SegmentationError) as exc:
        await segmenter(handler).segment("http://test/a.png")

    assert exc.value.http_status == 422
    assert "bad image" in exc.value.message


@pytest.mark.asyncio
async def test_timeout_raises():
    def handler(request):
        raise httpx.ConnectTimeout("slow", request=request)

    with pytest.raises(SegmentationError, match="timed out"):
        await segmenter(handler, INTAKE_TIMEOUT_SECONDS=30).segment("http://test/a.png")


@pytest.mark.asyncio
async def test_missing_credentials_raise():
    module = SegmentationModule(make_settings(), client=mock_client(lambda request: httpx.Response(200)))

    with pytest.raises(SegmentationError, match="FAL_API_KEY"):
        await module.segment("http://test/a.png")
