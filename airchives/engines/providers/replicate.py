"""
Replicate Provider (submit and poll)

Submits a prediction, then re-fetches it every POLL_INTERVAL_SECONDS until it
reaches a terminal status. The loop is bounded by POLL_MAX_ATTEMPTS and
POLL_MAX_WAIT_SECONDS; running out raises PollingTimeoutError, which is
distinct from the provider reporting a failed prediction.
"""

import asyncio
import time
from typing import Any, Dict, Optional

import httpx

from airchives.core.exceptions import (
    PollingTimeoutError,
    ProviderError,
    ProviderJobFailedError,
    ProviderTimeoutError,
)
from airchives.core.logging import get_logger
from airchives.engines.providers.base import SynthesisProvider, SynthesisRequest, SynthesisResult

logger = get_logger(__name__)

RUNNING_STATUSES = ("starting", "processing")
SUCCEEDED = "succeeded"


class ReplicateProvider(SynthesisProvider):
    name = "replicate"

    @property
    def predictions_url(self) -> str:
        return f"{self.config.REPLICATE_API_URL.rstrip('/')}/v1/predictions"

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _generate(self, request: SynthesisRequest) -> SynthesisResult:
        prediction = await self._submit(request)
        prediction_id = prediction.get("id")
        if not prediction_id:
            raise ProviderError("Replicate did not return a prediction id", service=self.name)

        prediction = await self._wait_for_terminal(prediction_id, prediction)

        status = prediction.get("status")
        if status != SUCCEEDED:
            error = prediction.get("error") or "no error detail"
            raise ProviderJobFailedError(
                f"Replicate prediction {prediction_id} ended with status '{status}': {error}",
                service=self.name,
                provider_status=str(status)
            )

        image_url = self._first_output(prediction.get("output"))
        if not image_url:
            raise ProviderError(
                f"Replicate prediction {prediction_id} succeeded without output",
                service=self.name
            )

        return SynthesisResult(
            image_url=image_url,
            pose=request.pose,
            provider=self.name,
            provider_image_id=prediction_id
        )

    async def _submit(self, request: SynthesisRequest) -> Dict[str, Any]:
        payload = {
            "version": self.config.REPLICATE_MODEL_VERSION,
            "input": {
                "prompt": request.prompt,
                "negative_prompt": request.negative_prompt,
                "image": request.image_url,
                "mask": request.mask_url,
                "pose": request.pose,
                **self.synthesis_parameters(request),
            },
        }
        response = await self._request("POST", self.predictions_url, json=payload)
        self._raise_for_status(response, "prediction submit")
        return self._json(response)

    async def _wait_for_terminal(self, prediction_id: str, prediction: Dict[str, Any]) -> Dict[str, Any]:
        started = time.monotonic()
        attempts = 0

        while prediction.get("status") in RUNNING_STATUSES:
            waited = time.monotonic() - started
            if attempts >= self.config.POLL_MAX_ATTEMPTS or waited >= self.config.POLL_MAX_WAIT_SECONDS:
                raise PollingTimeoutError(
                    f"Replicate prediction {prediction_id} still '{prediction.get('status')}' "
                    f"after {attempts} polls ({waited:.1f}s); gave up waiting",
                    service=self.name,
                    attempts=attempts,
                    waited_seconds=waited
                )

            await asyncio.sleep(self.config.POLL_INTERVAL_SECONDS)
            attempts += 1

            response = await self._request("GET", f"{self.predictions_url}/{prediction_id}")
            self._raise_for_status(response, "prediction status")
            prediction = self._json(response)
            logger.debug(
                "prediction_polled",
                prediction_id=prediction_id,
                status=prediction.get("status"),
                attempt=attempts
            )

        return prediction

    async def _request(self, method: str, url: str, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            return await self.client.request(
                method,
                url,
                json=json,
                headers=self.headers,
                timeout=self.config.PROVIDER_TIMEOUT_SECONDS
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"Replicate request timed out after {self.config.PROVIDER_TIMEOUT_SECONDS:g}s",
                service=self.name
            ) from e

    @staticmethod
    def _first_output(output: Any) -> Optional[str]:
        if isinstance(output, list):
            return output[0] if output else None
        if isinstance(output, str):
            return output
        return None
