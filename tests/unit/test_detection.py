import httpx
import pytest

from airchives.engines.garment.detection import (
    DetectionModule,
    FALLBACK_CONFIDENCE,
    map_label_to_category,
)
from airchives.engines.garment.schemas import DEFAULT_BOUNDING_BOX

from tests.conftest import make_settings, mock_client


@pytest.mark.parametrize(
    "label,category",
    [
        ("Evening Gown", "dress"),
        ("denim jacket", "outerwear"),
        ("Trench COAT", "outerwear"),
        ("pleated skirt", "bottom"),
        ("cargo pants", "bottom"),
        ("t-shirt", "top"),
        ("", "top"),
        (None, "top"),
        # dress is checked before outerwear
        ("dress coat", "dress"),
        # outerwear is checked before bottom
        ("jacket with shorts", "outerwear"),
    ]
)
def test_label_mapping(label, category):
    assert map_label_to_category(label) == category


@pytest.mark.asyncio
async def test_detect_maps_classifier_response():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers["Authorization"]
        captured["path"] = request.url.path
        return httpx.Response(
            200,
            json={
                "label": "leather blazer",
                "confidence": 0.87,
                "bounding_box": {"x": 10, "y": 12, "width": 60, "height": 80}
            }
        )

    module = DetectionModule(make_settings(FAL_API_KEY="k-1"), client=mock_client(handler))
    result = await module.detect("http://test/shirt.png")

    assert result.category == "outerwear"
    assert result.confidence == 0.87
    assert result.bounding_box["width"] == 60
    assert result.raw_label == "leather blazer"
    assert result.is_fallback is False
    assert captured["auth"] == "Key k-1"
    assert captured["path"].endswith("/fal-ai/image-classification")


@pytest.mark.asyncio
async def test_detect_falls_back_on_http_error():
    module = DetectionModule(
        make_settings(FAL_API_KEY="k-1"),
        client=mock_client(lambda request: httpx.Response(500, text="boom"))
    )
    result = await module.detect("http://test/shirt.png")

    assert result.category == "top"
    assert result.confidence == FALLBACK_CONFIDENCE
    assert result.bounding_box == DEFAULT_BOUNDING_BOX
    assert result.is_fallback is True


@pytest.mark.asyncio
async def test_detect_falls_back_on_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    module = DetectionModule(make_settings(FAL_API_KEY="k-1"), client=mock_client(handler))
    result = await module.detect("http://test/shirt.png")

    assert result.is_fallback is True


@pytest.mark.asyncio
async def test_detect_without_credentials_falls_back_without_calling():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"label": "dress"})

    module = DetectionModule(make_settings(), client=mock_client(handler))
    result = await module.detect("http://test/shirt.png")

    assert result.category == "top"
    assert result.is_fallback is True
    assert calls == []
