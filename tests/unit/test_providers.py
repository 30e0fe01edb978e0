import json

import httpx
import pytest

from airchives.core.exceptions import (
    CircuitBreakerOpenError,
    PollingTimeoutError,
    ProviderConfigurationError,
    ProviderError,
    ProviderJobFailedError,
    ProviderTimeoutError,
    get_circuit_breaker,
)
from airchives.engines.providers.fal import FalProvider
from airchives.engines.providers.replicate import ReplicateProvider
from airchives.engines.providers.base import SynthesisRequest, pose_for_index
from airchives.engines.providers.factory import providers_configured, resolve_provider, select_provider

from tests.conftest import make_settings, mock_client


def request(pose="front") -> SynthesisRequest:
    return SynthesisRequest(
        prompt="a model wearing a jacket",
        negative_prompt="blurry",
        image_url="http://test/garment.png",
        mask_url="https://fal.test/mask.png",
        pose=pose,
        seed=42
    )


# =============================================================================
# Selection
# =============================================================================

def test_fal_preferred_when_both_configured():
    selection = select_provider(make_settings(FAL_API_KEY="f", REPLICATE_API_TOKEN="r"))
    assert selection.name == "fal"
    assert selection.api_key == "f"


def test_replicate_when_only_token_configured():
    provider = resolve_provider(make_settings(REPLICATE_API_TOKEN="r"))
    assert isinstance(provider, ReplicateProvider)


def test_no_credentials_is_a_configuration_error():
    config = make_settings()
    assert providers_configured(config) is False
    with pytest.raises(ProviderConfigurationError) as exc:
        select_provider(config)
    assert exc.value.code == 503


def test_poses_cycle():
    assert [pose_for_index(i) for i in range(5)] == ["front", "side_45", "back", "front", "side_45"]


# =============================================================================
# fal.ai
# =============================================================================

@pytest.mark.asyncio
async def test_fal_returns_first_image():
    captured = {}

    def handler(req: httpx.Request) -> httpx.Response:
        captured["auth"] = req.headers["Authorization"]
        captured["body"] = json.loads(req.content)
        return httpx.Response(200, json={"images": [{"url": "https://fal.test/out.png", "id": "img-1"}]})

    config = make_settings(FAL_API_KEY="f")
    provider = FalProvider("f", config=config, client=mock_client(handler))
    result = await provider.generate(request("side_45"))

    assert result.image_url == "https://fal.test/out.png"
    assert result.pose == "side_45"
    assert result.provider == "fal"
    assert result.provider_image_id == "img-1"
    assert captured["auth"] == "Key f"
    assert captured["body"]["controlnet_condition"] == "side_45"
    assert captured["body"]["mask_url"] == "https://fal.test/mask.png"
    assert captured["body"]["num_inference_steps"] == 30
    assert captured["body"]["guidance_scale"] == 7.5
    assert captured["body"]["strength"] == 0.8
    assert captured["body"]["seed"] == 42
    assert (captured["body"]["width"], captured["body"]["height"]) == (1024, 1024)


@pytest.mark.asyncio
async def test_fal_error_status():
    provider = FalProvider(
        "f", config=make_settings(FAL_API_KEY="f"),
        client=mock_client(lambda req: httpx.Response(500, text="overloaded"))
    )
    with pytest.raises(ProviderError) as exc:
        await provider.generate(request())
    assert exc.value.http_status == 500


@pytest.mark.asyncio
async def test_fal_empty_images():
    provider = FalProvider(
        "f", config=make_settings(FAL_API_KEY="f"),
        client=mock_client(lambda req: httpx.Response(200, json={"images": []}))
    )
    with pytest.raises(ProviderError, match="no images"):
        await provider.generate(request())


@pytest.mark.asyncio
async def test_fal_timeout():
    def handler(req):
        raise httpx.ReadTimeout("slow", request=req)

    provider = FalProvider("f", config=make_settings(FAL_API_KEY="f"), client=mock_client(handler))
    with pytest.raises(ProviderTimeoutError, match="timed out after 120s"):
        await provider.generate(request())


@pytest.mark.asyncio
async def test_open_circuit_rejects_without_calling():
    calls = []

    def handler(req):
        calls.append(req)
        return httpx.Response(200, json={"images": [{"url": "u"}]})

    breaker = get_circuit_breaker("fal")
    for _ in range(breaker.failure_threshold):
        breaker.record_failure()

    provider = FalProvider("f", config=make_settings(FAL_API_KEY="f"), client=mock_client(handler))
    with pytest.raises(CircuitBreakerOpenError):
        await provider.generate(request())
    assert calls == []


# =============================================================================
# Replicate
# =============================================================================

def replicate_handler(statuses, final):
    """Submit returns 'starting'; each poll pops the next status."""
    polls = []

    def handler(req: httpx.Request) -> httpx.Response:
        if req.method == "POST":
            return httpx.Response(201, json={"id": "pred-1", "status": "starting"})
        polls.append(req.url.path)
        status = statuses.pop(0) if statuses else final["status"]
        body = {"id": "pred-1", "status": status}
        if status not in ("starting", "processing"):
            body.update(final)
        return httpx.Response(200, json=body)

    return handler, polls


@pytest.mark.asyncio
async def test_replicate_polls_until_succeeded():
    handler, polls = replicate_handler(
        ["processing", "processing"],
        {"status": "succeeded", "output": ["https://replicate.test/out.png"]}
    )
    provider = ReplicateProvider("r", config=make_settings(REPLICATE_API_TOKEN="r"), client=mock_client(handler))

    result = await provider.generate(request("back"))

    assert result.image_url == "https://replicate.test/out.png"
    assert result.pose == "back"
    assert result.provider_image_id == "pred-1"
    assert len(polls) == 3
    assert all(path.endswith("/v1/predictions/pred-1") for path in polls)


@pytest.mark.asyncio
async def test_replicate_string_output():
    handler, _ = replicate_handler([], {"status": "succeeded", "output": "https://replicate.test/one.png"})
    provider = ReplicateProvider("r", config=make_settings(REPLICATE_API_TOKEN="r"), client=mock_client(handler))

    result = await provider.generate(request())

    assert result.image_url == "https://replicate.test/one.png"


@pytest.mark.asyncio
async def test_replicate_failed_prediction():
    handler, _ = replicate_handler([], {"status": "failed", "error": "NSFW content detected"})
    provider = ReplicateProvider("r", config=make_settings(REPLICATE_API_TOKEN="r"), client=mock_client(handler))

    with pytest.raises(ProviderJobFailedError) as exc:
        await provider.generate(request())

    assert "NSFW content detected" in exc.value.message
    assert exc.value.details["provider_status"] == "failed"


@pytest.mark.asyncio
async def test_replicate_polling_is_bounded():
    handler, polls = replicate_handler(["processing"] * 100, {"status": "processing"})
    config = make_settings(REPLICATE_API_TOKEN="r", POLL_MAX_ATTEMPTS=3)
    provider = ReplicateProvider("r", config=config, client=mock_client(handler))

    with pytest.raises(PollingTimeoutError) as exc:
        await provider.generate(request())

    assert len(polls) == 3
    assert exc.value.details["attempts"] == 3


@pytest.mark.asyncio
async def test_replicate_submit_rejected():
    provider = ReplicateProvider(
        "r", config=make_settings(REPLICATE_API_TOKEN="r"),
        client=mock_client(lambda req: httpx.Response(401, text="Unauthenticated"))
    )
    with pytest.raises(ProviderError) as exc:
        await provider.generate(request())
    assert exc.value.http_status == 401
