import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from prometheus_client import make_asgi_app

from .config import Settings
from .crud import StoryRepository
from .errors import register_exception_handlers
from .file_storage import ImageIngestionPipeline
from .logging_config import configure_logging
from .models import create_engine, init_models
from .routes import router

logger = logging.getLogger('photojournal')


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Wire engine, repository and ingestion pipeline into a FastAPI app."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    engine = create_engine(settings.database_url)
    pipeline = ImageIngestionPipeline(
        upload_dir=settings.upload_dir,
        tmp_dir=settings.upload_tmp_dir,
        url_prefix=settings.upload_url_prefix,
        max_files=settings.max_photos_per_story,
        max_file_size=settings.max_photo_bytes,
        max_dimension=settings.max_image_dimension,
        quality=settings.image_quality,
    )

    app = FastAPI(title="Photo Journal API", version="0.1.0")
    app.state.settings = settings
    app.state.engine = engine
    app.state.repository = StoryRepository(engine)
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=['*'],
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )
    register_exception_handlers(app)

    app.include_router(router, prefix="/api")
    app.mount(settings.upload_url_prefix, StaticFiles(directory=settings.upload_dir), name='uploads')
    app.mount('/metrics', make_asgi_app())

    @app.get('/healthz')
    async def healthz():
        return {'status': 'ok'}

    @app.middleware('http')
    async def log_requests(request: Request, call_next):
        logger.info({'msg': 'request_start', 'method': request.method, 'path': request.url.path})
        response = await call_next(request)
        logger.info({'msg': 'request_end', 'path': request.url.path, 'status': response.status_code})
        return response

    @app.on_event("startup")
    async def startup():
        if settings.create_tables:
            await init_models(engine)
            logger.info({'msg': 'tables_ready', 'dialect': engine.dialect.name})

    @app.on_event("shutdown")
    async def shutdown():
        await engine.dispose()

    return app
