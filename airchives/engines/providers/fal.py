"""
fal.ai Provider (synchronous)

One request per pose; the response body carries the generated image.
"""

import httpx

from airchives.core.exceptions import ProviderError, ProviderTimeoutError
from airchives.engines.providers.base import SynthesisProvider, SynthesisRequest, SynthesisResult


class FalProvider(SynthesisProvider):
    name = "fal"

    @property
    def endpoint(self) -> str:
        return f"{self.config.FAL_API_URL.rstrip('/')}/v1/models/fal-ai/stable-diffusion-xl"

    async def _generate(self, request: SynthesisRequest) -> SynthesisResult:
        payload = {
            "prompt": request.prompt,
            "negative_prompt": request.negative_prompt,
            "image_url": request.image_url,
            "mask_url": request.mask_url,
            "controlnet_condition": request.pose,
            **self.synthesis_parameters(request),
        }
        headers = {
            "Authorization": f"Key {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = await self.client.post(
                self.endpoint,
                json=payload,
                headers=headers,
                timeout=self.config.PROVIDER_TIMEOUT_SECONDS
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"fal.ai request timed out after {self.config.PROVIDER_TIMEOUT_SECONDS:g}s",
                service=self.name
            ) from e

        self._raise_for_status(response, "generation")
        body = self._json(response)

        images = body.get("images") or []
        if not images or not images[0].get("url"):
            raise ProviderError("fal.ai returned no images", service=self.name)

        return SynthesisResult(
            image_url=images[0]["url"],
            pose=request.pose,
            provider=self.name,
            provider_image_id=images[0].get("id")
        )
