"""
Image ingestion for story photos.

Uploads are spooled to temp files, checked against the batch limits, then
resized/re-encoded to WEBP under a fresh uuid filename. Temp files are always
removed, one by one, whatever happens to their siblings.
"""

import asyncio
import io
import logging
import os
import uuid
from dataclasses import dataclass
from typing import List, Optional, Sequence

import aiofiles
from fastapi import UploadFile
from PIL import Image, ImageOps, UnidentifiedImageError
from prometheus_client import Counter, Histogram

from .errors import InternalError, ProcessingError, ValidationError
from .schemas.stories import PhotoIn

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

IMAGES_PROCESSED = Counter('photojournal_images_processed_total', 'Images normalized and stored')
IMAGES_FAILED = Counter('photojournal_images_failed_total', 'Images that could not be decoded or transformed')
BATCHES_REJECTED = Counter('photojournal_upload_batches_rejected_total', 'Upload batches rejected before processing')
TRANSFORM_SECONDS = Histogram('photojournal_image_transform_seconds', 'Time spent resizing and encoding one image')


@dataclass
class UploadItem:
    """One spooled upload: where it sits on disk and what the client said it is."""

    temp_path: str
    content_type: str
    size: int
    filename: str = ''


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning({'msg': 'file_cleanup_failed', 'path': path, 'error': str(e)})


def is_image_type(content_type: Optional[str]) -> bool:
    return bool(content_type) and content_type.lower().startswith('image/')


class ImageIngestionPipeline:
    """Validates, normalizes and stores uploaded story photos."""

    output_format = 'WEBP'
    output_extension = '.webp'

    def __init__(self, upload_dir: str, tmp_dir: str, url_prefix: str = '/uploads',
                 max_files: int = 10, max_file_size: int = 10 * 1024 * 1024,
                 max_dimension: int = 1200, quality: int = 85):
        self.upload_dir = upload_dir
        self.tmp_dir = tmp_dir
        self.url_prefix = url_prefix.rstrip('/')
        self.max_files = max_files
        self.max_file_size = max_file_size
        self.max_dimension = max_dimension
        self.quality = quality
        os.makedirs(self.upload_dir, exist_ok=True)
        os.makedirs(self.tmp_dir, exist_ok=True)

    # ---- naming / paths

    def generate_filename(self) -> str:
        return f'{uuid.uuid4().hex}{self.output_extension}'

    def get_file_path(self, filename: str) -> str:
        return os.path.join(self.upload_dir, filename)

    def get_public_url(self, filename: str) -> str:
        return f'{self.url_prefix}/{filename}'

    def path_for_url(self, url: str) -> Optional[str]:
        if not url.startswith(self.url_prefix + '/'):
            return None
        return self.get_file_path(url.rsplit('/', 1)[-1])

    # ---- transport side

    def check_batch_size(self, count: int) -> None:
        if count > self.max_files:
            BATCHES_REJECTED.inc()
            raise ValidationError(
                f'Too many photos. Max {self.max_files} per story',
                {'count': count, 'max_files': self.max_files},
            )

    async def spool_uploads(self, files: Sequence[UploadFile]) -> List[UploadItem]:
        """Stream each multipart part to a temp file, enforcing type and size limits.

        On any rejection every temp file written so far is removed before raising.
        """
        self.check_batch_size(len(files))
        items: List[UploadItem] = []
        try:
            for upload in files:
                items.append(await self._spool_one(upload))
        except BaseException:
            self.cleanup(items)
            raise
        return items

    async def _spool_one(self, upload: UploadFile) -> UploadItem:
        name = upload.filename or 'upload'
        if not is_image_type(upload.content_type):
            BATCHES_REJECTED.inc()
            raise ValidationError('Only image files are allowed', {'filename': name})
        temp_path = os.path.join(self.tmp_dir, uuid.uuid4().hex)
        size = 0
        try:
            async with aiofiles.open(temp_path, 'wb') as out:
                while True:
                    chunk = await upload.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.max_file_size:
                        BATCHES_REJECTED.inc()
                        raise ValidationError(
                            f'File too large. Max size is {self.max_file_size // (1024 * 1024)}MB',
                            {'filename': name},
                        )
                    await out.write(chunk)
        except BaseException:
            _remove_quietly(temp_path)
            raise
        return UploadItem(temp_path=temp_path, content_type=upload.content_type, size=size, filename=name)

    def cleanup(self, items: Sequence[UploadItem]) -> None:
        for item in items:
            _remove_quietly(item.temp_path)

    # ---- pipeline

    def validate_batch(self, items: Sequence[UploadItem]) -> None:
        self.check_batch_size(len(items))
        for item in items:
            if not is_image_type(item.content_type):
                BATCHES_REJECTED.inc()
                raise ValidationError('Only image files are allowed', {'filename': item.filename})
            if item.size > self.max_file_size:
                BATCHES_REJECTED.inc()
                raise ValidationError(
                    f'File too large. Max size is {self.max_file_size // (1024 * 1024)}MB',
                    {'filename': item.filename},
                )

    def transform(self, source_path: str) -> bytes:
        """Decode, orient, shrink to fit max_dimension (never enlarge) and encode."""
        with TRANSFORM_SECONDS.time():
            with Image.open(source_path) as img:
                img = ImageOps.exif_transpose(img)
                if img.mode not in ('RGB', 'RGBA'):
                    has_alpha = img.mode in ('LA', 'PA') or 'transparency' in img.info
                    img = img.convert('RGBA' if has_alpha else 'RGB')
                img.thumbnail((self.max_dimension, self.max_dimension), Image.Resampling.LANCZOS)
                output = io.BytesIO()
                img.save(output, format=self.output_format, quality=self.quality)
                return output.getvalue()

    async def _process_one(self, index: int, item: UploadItem) -> PhotoIn:
        filename = self.generate_filename()
        file_path = self.get_file_path(filename)
        try:
            try:
                content = await asyncio.to_thread(self.transform, item.temp_path)
            except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
                IMAGES_FAILED.inc()
                logger.warning({'msg': 'image_processing_failed', 'filename': item.filename, 'error': str(e)})
                raise ProcessingError(f"Could not process image '{item.filename}'", filename=item.filename) from e
            try:
                async with aiofiles.open(file_path, 'wb') as f:
                    await f.write(content)
            except OSError as e:
                _remove_quietly(file_path)
                logger.exception({'msg': 'asset_write_failed', 'path': file_path})
                raise InternalError(f'Could not store {file_path}: {e}') from e
        finally:
            _remove_quietly(item.temp_path)
        IMAGES_PROCESSED.inc()
        return PhotoIn(url=self.get_public_url(filename), caption='', order=index)

    async def ingest(self, items: Sequence[UploadItem]) -> List[PhotoIn]:
        """Normalize a whole batch; all of it lands or none of it does.

        Items run concurrently, results come back in submission order.
        """
        try:
            self.validate_batch(items)
        except ValidationError:
            self.cleanup(items)
            raise
        if not items:
            return []
        results = await asyncio.gather(
            *(self._process_one(index, item) for index, item in enumerate(items)),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            self.discard([r for r in results if isinstance(r, PhotoIn)])
            raise failures[0]
        logger.info({'msg': 'images_ingested', 'count': len(results)})
        return list(results)

    def discard(self, photos: Sequence[PhotoIn]) -> None:
        """Remove stored assets for photos that never made it into the database."""
        for photo in photos:
            path = self.path_for_url(photo.url)
            if path:
                _remove_quietly(path)
