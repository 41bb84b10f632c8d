from fastapi import Request

from .crud import StoryRepository
from .file_storage import ImageIngestionPipeline


def get_repository(request: Request) -> StoryRepository:
    return request.app.state.repository


def get_pipeline(request: Request) -> ImageIngestionPipeline:
    return request.app.state.pipeline
