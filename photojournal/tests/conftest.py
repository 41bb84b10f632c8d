import io
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from PIL import Image

from photojournal.config import Settings
from photojournal.crud import StoryRepository
from photojournal.file_storage import ImageIngestionPipeline
from photojournal.main import create_app
from photojournal.models import create_engine, init_models
from photojournal.schemas.users import UserUpsertIn


def make_image(width: int, height: int, fmt: str = 'JPEG', mode: str = 'RGB', color=(200, 120, 40)) -> bytes:
    buf = io.BytesIO()
    Image.new(mode, (width, height), color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'journal.db'}",
        upload_dir=str(tmp_path / 'uploads'),
        upload_tmp_dir=str(tmp_path / 'tmp'),
        jwt_secret='test-secret',
        log_level='WARNING',
    )


@pytest_asyncio.fixture
async def engine(settings):
    engine = create_engine(settings.database_url)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def repo(engine):
    repo = StoryRepository(engine)
    await repo.upsert_user(UserUpsertIn(id='alice', email='alice@example.com', first_name='Alice'))
    await repo.upsert_user(UserUpsertIn(id='bob', email='bob@example.com', first_name='Bob'))
    return repo


@pytest.fixture
def pipeline(settings):
    return ImageIngestionPipeline(upload_dir=settings.upload_dir, tmp_dir=settings.upload_tmp_dir)


@pytest_asyncio.fixture
async def app(settings):
    app = create_app(settings)
    await init_models(app.state.engine)
    yield app
    await app.state.engine.dispose()


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as ac:
        yield ac


@pytest.fixture
def auth_headers(settings):
    def _headers(sub: str, **claims) -> dict:
        expire = datetime.now(timezone.utc) + timedelta(hours=1)
        token = jwt.encode({'sub': sub, 'exp': expire, **claims}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
        return {'Authorization': f'Bearer {token}'}
    return _headers


@pytest.fixture
def image_bytes():
    return make_image
