"""
Artifact Publisher

Downloads a generated image from the provider, stores it under
generated/{generation_id} and records it as an OutputImage. Each publish
commits in its own session so concurrent poses never share one.
"""

import mimetypes
from typing import Optional, Tuple

import httpx
from sqlalchemy.orm import sessionmaker

from airchives.core.config import Settings, settings as default_settings
from airchives.core.exceptions import ArtifactDownloadError
from airchives.core.logging import get_logger
from airchives.core.storage import IStorage
from airchives.engines.providers.base import SynthesisResult
from airchives.modules.generations.models import AspectRatio, OutputImage
from airchives.modules.generations.repositories import GenerationRepository

logger = get_logger(__name__)


class ArtifactPublisher:
    def __init__(
        self,
        storage: IStorage,
        session_maker: sessionmaker,
        config: Settings = default_settings,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.storage = storage
        self.session_maker = session_maker
        self.config = config
        self._client = client

    async def download(self, url: str) -> Tuple[bytes, str]:
        """Fetch the remote image. Returns (bytes, content type)."""
        try:
            if self._client is not None:
                response = await self._client.get(url, timeout=self.config.DOWNLOAD_TIMEOUT_SECONDS)
            else:
                async with httpx.AsyncClient(
                    timeout=self.config.DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True
                ) as client:
                    response = await client.get(url)
        except httpx.TimeoutException as e:
            raise ArtifactDownloadError(
                f"Download of {url} timed out after {self.config.DOWNLOAD_TIMEOUT_SECONDS:g}s"
            ) from e
        except httpx.HTTPError as e:
            raise ArtifactDownloadError(f"Download of {url} failed: {e}") from e

        if response.status_code != 200:
            raise ArtifactDownloadError(
                f"Download of {url} failed with HTTP {response.status_code}",
                http_status=response.status_code
            )
        if not response.content:
            raise ArtifactDownloadError(f"Download of {url} returned an empty body")

        content_type = response.headers.get("content-type", "image/png").split(";")[0].strip()
        return response.content, content_type

    async def publish(
        self,
        generation_id: str,
        result: SynthesisResult,
        index: int,
        aspect_ratio: AspectRatio = AspectRatio.SQUARE
    ) -> OutputImage:
        image_bytes, content_type = await self.download(result.image_url)

        extension = mimetypes.guess_extension(content_type) or ".png"
        storage_key = await self.storage.upload(
            image_bytes,
            filename=f"output_{index}{extension}",
            folder=f"generated/{generation_id}",
            content_type=content_type
        )
        image_url = await self.storage.get_url(storage_key)

        async with self.session_maker() as session:
            image = await GenerationRepository(session).save_image(
                OutputImage(
                    generation_id=generation_id,
                    image_url=image_url,
                    storage_key=storage_key,
                    pose=result.pose,
                    aspect_ratio=aspect_ratio.value,
                    provider_image_id=result.provider_image_id
                )
            )

        logger.info(
            "output_image_published",
            output_image_id=image.id,
            pose=result.pose,
            storage_key=storage_key,
            size_bytes=len(image_bytes)
        )
        return image
