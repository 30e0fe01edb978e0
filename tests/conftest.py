import asyncio
import io
import os
import tempfile
from typing import AsyncGenerator, Callable, List, Optional

# Isolate the global settings before anything from airchives is imported
_TEST_ROOT = tempfile.mkdtemp(prefix="airchives-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_ROOT}/global.db"
os.environ["LOCAL_STORAGE_PATH"] = f"{_TEST_ROOT}/storage"
os.environ["PIPELINE_EXECUTOR"] = "local"
os.environ["LOG_FORMAT_JSON"] = "false"
os.environ.pop("FAL_API_KEY", None)
os.environ.pop("REPLICATE_API_TOKEN", None)

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from airchives.core.config import Settings
from airchives.core.database import create_db_and_tables
from airchives.core.exceptions import reset_circuit_breakers
from airchives.core.storage import LocalStorage
from airchives.engines.garment.detection import DetectionModule
from airchives.engines.garment.intake import GarmentIntakeOrchestrator
from airchives.engines.garment.segmentation import SegmentationModule
from airchives.engines.providers.base import SynthesisProvider, SynthesisRequest, SynthesisResult
from airchives.modules.catalog.repositories import VirtualModelRepository
from airchives.modules.garments.models import Garment, GarmentStatus
from airchives.modules.garments.repositories import GarmentRepository
from airchives.pipeline.publisher import ArtifactPublisher


def make_image_bytes(color=(200, 30, 40), size=(64, 64), fmt="PNG", backdrop=None) -> bytes:
    """Solid image, optionally with a backdrop border around the colour."""
    img = Image.new("RGB", size, backdrop or color)
    if backdrop:
        inner = Image.new("RGB", (size[0] // 2, size[1] // 2), color)
        img.paste(inner, (size[0] // 4, size[1] // 4))
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def make_settings(**overrides) -> Settings:
    values = dict(
        FAL_API_KEY=None,
        REPLICATE_API_TOKEN=None,
        FAL_API_URL="https://fal.test",
        REPLICATE_API_URL="https://replicate.test",
        PUBLIC_BASE_URL="http://test",
        POLL_INTERVAL_SECONDS=0,
        POLL_MAX_ATTEMPTS=5,
        POLL_MAX_WAIT_SECONDS=30,
        ALLOW_PARTIAL_BATCH=False,
    )
    values.update(overrides)
    return Settings(**values)


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class ScriptedProvider(SynthesisProvider):
    """Provider whose per-pose behaviour is scripted by the test."""

    name = "scripted"

    def __init__(self, config: Settings, outcomes: Optional[dict] = None, delay: float = 0):
        super().__init__("scripted-key", config=config)
        self.outcomes = outcomes or {}
        self.delay = delay
        self.requests: List[SynthesisRequest] = []
        self.closed = False

    async def _generate(self, request: SynthesisRequest) -> SynthesisResult:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.get(request.pose)
        if isinstance(outcome, Exception):
            raise outcome
        return SynthesisResult(
            image_url=f"https://cdn.test/{request.pose}.png",
            pose=request.pose,
            provider=self.name,
            provider_image_id=f"img-{request.pose}"
        )

    async def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def closed_circuit_breakers():
    reset_circuit_breakers()
    yield
    reset_circuit_breakers()


@pytest.fixture
def settings() -> Settings:
    return make_settings(FAL_API_KEY="fal-test-key")


@pytest.fixture
async def session_maker(tmp_path) -> AsyncGenerator[sessionmaker, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_db_and_tables(engine)
    maker = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with maker() as session:
        await VirtualModelRepository(session).seed()
    yield maker
    await engine.dispose()


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(str(tmp_path / "storage"), public_base_url="http://test")


@pytest.fixture
def image_downloads() -> httpx.AsyncClient:
    """Serves a PNG for every generated image URL."""
    png = make_image_bytes((30, 60, 200))

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=png, headers={"content-type": "image/png"})

    return mock_client(handler)


@pytest.fixture
def publisher(storage, session_maker, settings, image_downloads) -> ArtifactPublisher:
    return ArtifactPublisher(storage, session_maker, config=settings, client=image_downloads)


@pytest.fixture
async def segmented_garment(session_maker) -> Garment:
    async with session_maker() as session:
        return await GarmentRepository(session).save(
            Garment(
                owner_id="anonymous",
                original_image_url="http://test/static/storage/garments/shirt.png",
                category="TOP",
                mask_image_url="https://fal.test/masks/shirt.png",
                status=GarmentStatus.SEGMENTED.value
            )
        )


@pytest.fixture
async def unsegmented_garment(session_maker) -> Garment:
    async with session_maker() as session:
        return await GarmentRepository(session).save(
            Garment(
                owner_id="anonymous",
                original_image_url="http://test/static/storage/garments/blurry.png",
                status=GarmentStatus.FAILED.value,
                error_message="Segmentation API returned no mask"
            )
        )


def intake_handler(
    label: str = "denim jacket",
    mask_url: Optional[str] = "https://fal.test/masks/garment.png",
    detected: bool = True
) -> Callable[[httpx.Request], httpx.Response]:
    """Hosted classifier and segmentation endpoints in one handler."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("image-classification"):
            return httpx.Response(200, json={"label": label, "confidence": 0.91})
        if request.url.path.endswith("image-segmentation"):
            body = {"confidence": 0.93, "detected": detected}
            if mask_url:
                body["mask_url"] = mask_url
            return httpx.Response(200, json=body)
        return httpx.Response(404)

    return handler


@pytest.fixture
def intake(settings) -> GarmentIntakeOrchestrator:
    http = mock_client(intake_handler())
    return GarmentIntakeOrchestrator(
        detector=DetectionModule(settings, client=http),
        segmenter=SegmentationModule(settings, client=http)
    )


@pytest.fixture
def dispatcher() -> "RecordingDispatcher":
    return RecordingDispatcher()


@pytest.fixture
async def client(session_maker, storage, settings, intake, dispatcher) -> AsyncGenerator[AsyncClient, None]:
    from airchives.api.dependencies import get_dispatcher, get_intake_orchestrator
    from airchives.core.config import get_settings
    from airchives.core.database import get_session
    from airchives.core.storage import get_storage
    from airchives.main import app

    async def override_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_intake_orchestrator] = lambda: intake

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


class RecordingDispatcher:
    """Dispatcher double that only records what would have been scheduled."""

    def __init__(self, fail: bool = False):
        self.dispatched: List[str] = []
        self.fail = fail

    def dispatch(self, generation_id: str) -> Optional[str]:
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.dispatched.append(generation_id)
        return f"task-{len(self.dispatched)}"
