"""
Synthesis Provider Interface

A uniform contract over the remote image-synthesis APIs. Each adapter turns a
SynthesisRequest for one pose into a SynthesisResult pointing at the remote
image, or raises a ProviderError subclass. Adapters never retry.
"""

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Tuple

import httpx

from airchives.core.config import Settings, settings as default_settings
from airchives.core.exceptions import (
    CircuitBreakerOpenError,
    ProviderError,
    ProviderTimeoutError,
    get_circuit_breaker,
)
from airchives.core.logging import get_logger
from airchives.core.metrics import record_provider_call

logger = get_logger(__name__)

POSES: Tuple[str, ...] = ("front", "side_45", "back")


def pose_for_index(index: int) -> str:
    """Poses cycle front, side_45, back, front, ..."""
    return POSES[index % len(POSES)]


@dataclass
class SynthesisRequest:
    prompt: str
    negative_prompt: str
    image_url: str
    mask_url: str
    pose: str
    seed: int = field(default_factory=lambda: random.randint(0, 999999))


@dataclass
class SynthesisResult:
    image_url: str
    pose: str
    provider: str
    provider_image_id: Optional[str] = None


class SynthesisProvider(ABC):
    """Base adapter: owns the HTTP client, circuit breaker and call metrics."""

    name: str = "provider"

    def __init__(
        self,
        api_key: str,
        config: Settings = default_settings,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key
        self.config = config
        self._client = client
        self._owns_client = client is None
        self.circuit = get_circuit_breaker(self.name)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.PROVIDER_TIMEOUT_SECONDS)
        return self._client

    async def close(self):
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def synthesis_parameters(self, request: SynthesisRequest) -> Dict[str, Any]:
        """Fixed synthesis parameters shared by every provider."""
        return {
            "num_inference_steps": self.config.SYNTHESIS_INFERENCE_STEPS,
            "guidance_scale": self.config.SYNTHESIS_GUIDANCE_SCALE,
            "strength": self.config.SYNTHESIS_STRENGTH,
            "seed": request.seed,
            "width": self.config.SYNTHESIS_WIDTH,
            "height": self.config.SYNTHESIS_HEIGHT,
        }

    async def generate(self, request: SynthesisRequest) -> SynthesisResult:
        """Synthesize one pose, guarded by the provider's circuit breaker."""
        if not self.circuit.can_execute():
            record_provider_call(self.name, "rejected")
            raise CircuitBreakerOpenError(self.name)

        logger.info("pose_synthesis_started", provider=self.name, pose=request.pose)
        try:
            result = await self._generate(request)
        except ProviderTimeoutError as e:
            self.circuit.record_failure(e)
            record_provider_call(self.name, "timeout")
            logger.warning("pose_synthesis_failed", provider=self.name, pose=request.pose, error=e.message)
            raise
        except ProviderError as e:
            self.circuit.record_failure(e)
            record_provider_call(self.name, "error")
            logger.warning("pose_synthesis_failed", provider=self.name, pose=request.pose, error=e.message)
            raise
        except httpx.HTTPError as e:
            self.circuit.record_failure(e)
            record_provider_call(self.name, "error")
            logger.warning("pose_synthesis_failed", provider=self.name, pose=request.pose, error=str(e))
            raise ProviderError(f"{self.name} request failed: {e}", service=self.name) from e

        self.circuit.record_success()
        record_provider_call(self.name, "success")
        logger.info("pose_synthesis_completed", provider=self.name, pose=request.pose)
        return result

    @abstractmethod
    async def _generate(self, request: SynthesisRequest) -> SynthesisResult:
        """Provider-specific call; raise ProviderError subclasses on failure."""

    def _raise_for_status(self, response: httpx.Response, action: str):
        if response.status_code not in (200, 201):
            raise ProviderError(
                f"{self.name} {action} failed with HTTP {response.status_code}: {response.text}",
                service=self.name,
                http_status=response.status_code
            )

    def _json(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise ProviderError(f"{self.name} returned a non-JSON body", service=self.name) from e
        if not isinstance(body, dict):
            raise ProviderError(f"{self.name} returned an unexpected body", service=self.name)
        return body
