import io
import asyncio
from typing import AsyncGenerator, Callable, Optional, List

import pytest
from httpx import AsyncClient, ASGITransport
from PIL import Image

from effect_studio.core.config import Settings
from effect_studio.core.storage import MemoryStorage
from effect_studio.main import create_app
from effect_studio.modules.imagery.effects import EffectRegistry
from effect_studio.modules.imagery.images import ImageStore
from effect_studio.pipeline.generation import (
    GenerativeTransformer,
    GenerationResponse,
    ContentPart,
)


def make_image_bytes(
    size=(500, 500),
    image_format: str = "JPEG",
    color=(180, 90, 40),
    mode: str = "RGB"
) -> bytes:
    image = Image.new(mode, size, color)
    # White stripes so filters have edges to work on
    for x in range(0, size[0], 7):
        for y in range(0, min(size[1], 20)):
            image.putpixel((x, y), (255, 255, 255) if mode == "RGB" else (255, 255, 255, 255))
    buffer = io.BytesIO()
    image.save(buffer, format=image_format)
    return buffer.getvalue()


class FakeTransformer(GenerativeTransformer):
    """Scriptable generative transformer."""

    name = "fake"

    def __init__(
        self,
        response: Optional[GenerationResponse] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None
    ):
        self.response = response or GenerationResponse(parts=[ContentPart(text="no image today")])
        self.delay = delay
        self.error = error
        self.calls: List[str] = []
        self.cancelled = False
        self.finished = False
        self.closed = False

    @classmethod
    def returning_image(cls, image_bytes: Optional[bytes] = None, **kwargs) -> "FakeTransformer":
        data = image_bytes or make_image_bytes((320, 240), "PNG", color=(20, 120, 200))
        return cls(
            response=GenerationResponse(parts=[
                ContentPart(text="Here is your image"),
                ContentPart(inline_data=data, mime_type="image/png"),
            ]),
            **kwargs
        )

    async def generate(self, image_bytes: bytes, mime_type: str, directive: str) -> GenerationResponse:
        self.calls.append(directive)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        self.finished = True
        if self.error:
            raise self.error
        return self.response

    async def aclose(self):
        self.closed = True


@pytest.fixture
def image_factory() -> Callable[..., bytes]:
    return make_image_bytes


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def image_store(storage) -> ImageStore:
    return ImageStore(storage, max_size_bytes=10 * 1024 * 1024, max_dimension=2048, ttl_seconds=1800)


@pytest.fixture
def registry() -> EffectRegistry:
    return EffectRegistry()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        ENVIRONMENT="test",
        STORAGE_BACKEND="memory",
        GEMINI_API_KEY=None,
        SWEEP_INTERVAL_SECONDS=0,
        LOG_FORMAT_JSON=False,
    )


async def _client_for(app) -> AsyncGenerator[AsyncClient, None]:
    # Trigger lifespan events (startup/shutdown)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac


@pytest.fixture
async def client(test_settings) -> AsyncGenerator[AsyncClient, None]:
    """App with no generative service configured: every result comes from the fallback."""
    app = create_app(config=test_settings, storage=MemoryStorage())
    async for ac in _client_for(app):
        yield ac


@pytest.fixture
async def generative_client(test_settings) -> AsyncGenerator[AsyncClient, None]:
    """App whose generative service returns an image."""
    app = create_app(
        config=test_settings,
        transformer=FakeTransformer.returning_image(),
        storage=MemoryStorage()
    )
    async for ac in _client_for(app):
        yield ac


async def poll_until_terminal(client: AsyncClient, job_id: str, attempts: int = 200) -> dict:
    """Poll the status endpoint until the job completes or fails."""
    body = {}
    for _ in range(attempts):
        response = await client.get(f"/api/v1/status/{job_id}")
        assert response.status_code == 200
        body = response.json()
        if body["status"] in ("completed", "failed"):
            return body
        await asyncio.sleep(0.02)
    raise AssertionError(f"Job {job_id} did not finish: {body}")


@pytest.fixture
def poll():
    return poll_until_terminal


@pytest.fixture
def fake_transformer():
    return FakeTransformer
