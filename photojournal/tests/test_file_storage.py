import os
import time

import pytest
from PIL import Image

from photojournal.errors import ProcessingError, ValidationError
from photojournal.file_storage import UploadItem


def _spool(pipeline, tmp_path, data: bytes, name: str = 'photo.jpg', content_type: str = 'image/jpeg') -> UploadItem:
    path = tmp_path / f'upload-{name}'
    path.write_bytes(data)
    return UploadItem(temp_path=str(path), content_type=content_type, size=len(data), filename=name)


def _stored_image(pipeline, url):
    path = pipeline.path_for_url(url)
    with Image.open(path) as img:
        return img.format, img.size


@pytest.mark.asyncio
async def test_large_image_is_downscaled_keeping_aspect(pipeline, tmp_path, image_bytes):
    item = _spool(pipeline, tmp_path, image_bytes(2400, 1600))
    photo, = await pipeline.ingest([item])

    fmt, (width, height) = _stored_image(pipeline, photo.url)
    assert fmt == 'WEBP'
    assert (width, height) == (1200, 800)
    assert not os.path.exists(item.temp_path)


@pytest.mark.asyncio
async def test_tall_image_fits_both_dimensions(pipeline, tmp_path, image_bytes):
    photo, = await pipeline.ingest([_spool(pipeline, tmp_path, image_bytes(900, 3000))])
    _, (width, height) = _stored_image(pipeline, photo.url)
    assert height == 1200
    assert width == 360


@pytest.mark.asyncio
async def test_small_image_is_never_upscaled(pipeline, tmp_path, image_bytes):
    photo, = await pipeline.ingest([_spool(pipeline, tmp_path, image_bytes(640, 480, fmt='PNG'), 'a.png', 'image/png')])
    assert _stored_image(pipeline, photo.url) == ('WEBP', (640, 480))


@pytest.mark.asyncio
async def test_palette_image_with_transparency(pipeline, tmp_path, image_bytes):
    data = image_bytes(50, 50, fmt='PNG', mode='RGBA', color=(0, 0, 0, 0))
    photo, = await pipeline.ingest([_spool(pipeline, tmp_path, data, 'clear.png', 'image/png')])
    assert _stored_image(pipeline, photo.url)[1] == (50, 50)


@pytest.mark.asyncio
async def test_output_names_are_fresh_and_descriptors_ordered(pipeline, tmp_path, image_bytes):
    items = [_spool(pipeline, tmp_path, image_bytes(10 + i, 10), f'holiday-{i}.jpg') for i in range(3)]
    photos = await pipeline.ingest(items)

    assert [p.order for p in photos] == [0, 1, 2]
    assert all(p.caption == '' for p in photos)
    assert len({p.url for p in photos}) == 3
    for p in photos:
        assert p.url.startswith('/uploads/')
        assert p.url.endswith('.webp')
        assert 'holiday' not in p.url


@pytest.mark.asyncio
async def test_results_follow_submission_order_not_completion_order(pipeline, tmp_path, image_bytes, monkeypatch):
    widths = [30, 20, 10]
    items = [_spool(pipeline, tmp_path, image_bytes(w, 5), f'{w}.jpg') for w in widths]
    delays = {item.temp_path: 0.05 * (len(items) - i) for i, item in enumerate(items)}
    transform = pipeline.transform

    def slow_transform(path):
        time.sleep(delays[path])
        return transform(path)

    monkeypatch.setattr(pipeline, 'transform', slow_transform)
    photos = await pipeline.ingest(items)

    assert [_stored_image(pipeline, p.url)[1][0] for p in photos] == widths


@pytest.mark.asyncio
async def test_too_many_files_rejected_before_any_work(pipeline, tmp_path, image_bytes, monkeypatch):
    items = [_spool(pipeline, tmp_path, image_bytes(10, 10), f'{i}.jpg') for i in range(11)]

    def fail(path):
        raise AssertionError('transform must not run')

    monkeypatch.setattr(pipeline, 'transform', fail)
    with pytest.raises(ValidationError):
        await pipeline.ingest(items)

    assert all(not os.path.exists(item.temp_path) for item in items)
    assert os.listdir(pipeline.upload_dir) == []


@pytest.mark.asyncio
async def test_oversize_file_rejected(pipeline, tmp_path, image_bytes):
    item = _spool(pipeline, tmp_path, image_bytes(10, 10))
    item.size = pipeline.max_file_size + 1
    with pytest.raises(ValidationError):
        await pipeline.ingest([item])
    assert not os.path.exists(item.temp_path)


@pytest.mark.asyncio
async def test_non_image_type_rejected(pipeline, tmp_path):
    item = _spool(pipeline, tmp_path, b'hello', 'notes.txt', 'text/plain')
    with pytest.raises(ValidationError):
        await pipeline.ingest([item])


@pytest.mark.asyncio
async def test_undecodable_image_fails_whole_batch(pipeline, tmp_path, image_bytes):
    good = _spool(pipeline, tmp_path, image_bytes(20, 20), 'good.jpg')
    bad = _spool(pipeline, tmp_path, b'definitely not a jpeg', 'broken.jpg')
    also_good = _spool(pipeline, tmp_path, image_bytes(20, 20), 'fine.jpg')

    with pytest.raises(ProcessingError) as excinfo:
        await pipeline.ingest([good, bad, also_good])

    assert excinfo.value.filename == 'broken.jpg'
    assert 'broken.jpg' in excinfo.value.message
    # every temp file is gone and nothing from the batch stays stored
    assert all(not os.path.exists(i.temp_path) for i in (good, bad, also_good))
    assert os.listdir(pipeline.upload_dir) == []


@pytest.mark.asyncio
async def test_empty_batch(pipeline):
    assert await pipeline.ingest([]) == []


def test_path_for_url(pipeline):
    assert pipeline.path_for_url('/uploads/abc.webp') == os.path.join(pipeline.upload_dir, 'abc.webp')
    assert pipeline.path_for_url('https://elsewhere/abc.webp') is None
