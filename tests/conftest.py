"""
Pytest configuration and fixtures for VEO3 Studio tests
"""

import base64
from typing import AsyncGenerator, List, Optional

import aiohttp
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from config.config import SESSION_COOKIE_NAME
from src.core.enums import PlanType, TokenPoolType
from src.core.exceptions import UpstreamError
from src.database import crud
from src.database.models import Base
from src.services import storage_service, token_pool
from src.services.storage_service import MediaStorage
from src.services.veo_service import GeneratedImage, VideoStatus


# Smallest valid PNG header + payload used as generated image bytes
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture(scope="function")
async def test_db_engine(tmp_path):
    """
    Create test database engine

    File-backed SQLite so batch workers can open their own connections.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine"""
    return async_sessionmaker(test_db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


# ===========================
# USERS
# ===========================


@pytest.fixture
def make_user(db_session):
    """Factory: create a user on a given plan"""

    async def _make_user(
        username: str,
        plan_type: PlanType = PlanType.FREE,
        is_admin: bool = False,
        referred_by: Optional[str] = None,
        password: str = "secret123",
        **kwargs,
    ):
        return await crud.create_user(
            db_session,
            username,
            password,
            plan_type=plan_type,
            is_admin=is_admin,
            referred_by=referred_by,
            **kwargs,
        )

    return _make_user


@pytest.fixture
async def admin_user(make_user):
    return await make_user("admin", is_admin=True)


@pytest.fixture
async def free_user(make_user):
    return await make_user("free_user")


@pytest.fixture
async def scale_user(make_user):
    return await make_user("scale_user", plan_type=PlanType.SCALE)


@pytest.fixture
async def empire_user(make_user):
    return await make_user("empire_user", plan_type=PlanType.EMPIRE)


# ===========================
# TOKENS
# ===========================


@pytest.fixture
def seed_tokens(db_session):
    """Factory: add credentials to a pool"""

    async def _seed(pool: TokenPoolType = TokenPoolType.VIDEO, count: int = 1, prefix: str = "token"):
        credentials = [(f"{prefix}-{i}", f"{prefix} {i}") for i in range(1, count + 1)]
        return await token_pool.add_tokens(db_session, pool, credentials)

    return _seed


# ===========================
# UPSTREAM FAKES
# ===========================


class FakeVeoClient:
    """In-memory stand-in for VeoClient"""

    def __init__(self):
        self.start_calls: List[dict] = []
        self.status_calls: List[str] = []
        self.image_calls: List[str] = []
        self.uploads: List[tuple] = []
        # credential -> exception raised by start_video
        self.start_errors: dict = {}
        self.start_error: Optional[Exception] = None
        # VideoStatus / exception per check, then `default_status`
        self.status_queue: list = []
        self.default_status = VideoStatus(state="completed", video_url="https://cdn.example/video.mp4")
        self.failing_image_prompts: set = set()
        self.image_error: Optional[Exception] = None

    async def start_video(self, api_key, prompt, aspect_ratio, scene_id, start_media_id=None, end_media_id=None):
        self.start_calls.append({
            "api_key": api_key,
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
            "scene_id": scene_id,
            "start_media_id": start_media_id,
            "end_media_id": end_media_id,
        })
        error = self.start_errors.get(api_key) or self.start_error
        if error:
            raise error
        return f"operations/op-{len(self.start_calls)}"

    async def check_video_status(self, api_key, operation_name, scene_id):
        self.status_calls.append(operation_name)
        if self.status_queue:
            status = self.status_queue.pop(0)
            if isinstance(status, Exception):
                raise status
            return status
        return self.default_status

    async def generate_image(self, api_key, prompt, aspect_ratio):
        self.image_calls.append(prompt)
        if self.image_error:
            raise self.image_error
        if prompt in self.failing_image_prompts:
            raise UpstreamError("Image generation failed: blocked", status=400)
        return GeneratedImage(encoded_image=base64.b64encode(PNG_BYTES).decode(), media_id=f"img-{len(self.image_calls)}")

    async def upload_image(self, api_key, data, mime):
        self.uploads.append((data, mime))
        return f"media-{len(self.uploads)}"


class FakeVoiceClient:
    """In-memory stand-in for VoiceClient"""

    def __init__(self):
        self.calls: List[tuple] = []
        self.errors: dict = {}

    async def _synthesize(self, provider, api_key, request):
        self.calls.append((provider, api_key, request.text))
        error = self.errors.get(api_key)
        if error:
            raise error
        return b"ID3" + request.text.encode()

    async def cartesia_tts(self, api_key, request):
        return await self._synthesize("cartesia", api_key, request)

    async def zyphra_tts(self, api_key, request):
        return await self._synthesize("zyphra", api_key, request)


@pytest.fixture
def fake_veo() -> FakeVeoClient:
    return FakeVeoClient()


@pytest.fixture
def fake_voice() -> FakeVoiceClient:
    return FakeVoiceClient()


@pytest.fixture
def storage(tmp_path) -> MediaStorage:
    return MediaStorage(tmp_path / "media", "/media")


class RefusingSession:
    """aiohttp.ClientSession whose requests never reach a host"""

    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def get(self, url, **kwargs):
        raise aiohttp.ClientConnectionError(f"Cannot connect to host for {url}")


@pytest.fixture
def unreachable_http(monkeypatch):
    """Remote media fetches fail at the transport layer"""
    monkeypatch.setattr(storage_service.aiohttp, "ClientSession", RefusingSession)


# ===========================
# HTTP CLIENT
# ===========================


@pytest.fixture
async def api_client(session_factory, fake_veo, fake_voice, storage):
    """
    ASGI client with database and upstream dependencies overridden

    Lifespan is not run, so the scheduler never starts.
    """
    from api_server import app
    from src.api.rate_limit import limiter
    from src.database.engine import get_session, get_session_factory
    from src.services.storage_service import get_storage
    from src.services.veo_service import get_veo_client
    from src.services.voice_service import get_voice_client

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_veo_client] = lambda: fake_veo
    app.dependency_overrides[get_voice_client] = lambda: fake_voice
    app.dependency_overrides[get_storage] = lambda: storage
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def login_as(client: AsyncClient, user, role: str = "user") -> None:
    """Put a valid session cookie for `user` on the client"""
    from src.api.auth import create_session_token

    client.cookies.set(SESSION_COOKIE_NAME, create_session_token(user.id, role))


def parse_sse(body: str) -> List[tuple]:
    """Split an SSE body into (event, data) pairs"""
    import json

    events = []
    for frame in body.strip().split("\n\n"):
        event, data = None, None
        for line in frame.splitlines():
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        if event:
            events.append((event, data))
    return events
