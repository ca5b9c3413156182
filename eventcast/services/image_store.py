# eventcast/services/image_store.py

"""
Event image storage.

Stores an event's header image plus a bounded list of additional images
and returns the URLs to embed. ``merge`` keeps the event's existing
additional images and appends new ones; ``replace`` discards them.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

import aiohttp

logger = logging.getLogger(__name__)

UPLOAD_MODES = ('merge', 'replace')


class ImageUploadError(Exception):
    """Raised when images cannot be stored."""


@dataclass
class ImageFile:
    filename: str
    content: bytes
    content_type: str = 'application/octet-stream'


@dataclass
class ImageUploadResult:
    header_url: Optional[str] = None
    image_urls: List[str] = field(default_factory=list)


def _safe_name(filename):
    return re.sub(r'[^A-Za-z0-9._-]', '_', os.path.basename(filename)) or 'image'


class ImageStore(ABC):

    def __init__(self, max_additional_images=4):
        self.max_additional_images = max_additional_images

    async def upload(self, event_id, header: Optional[ImageFile] = None, extra=None,
                     mode='merge', existing_urls=None, existing_header=None) -> ImageUploadResult:
        """
        Store images for an event and return the resulting URL set.

        Args:
            event_id: Owning event
            header: Optional new header image
            extra: Optional list of additional ImageFile objects
            mode: 'merge' or 'replace'
            existing_urls: Additional image URLs currently on the event
            existing_header: Header URL currently on the event
        """
        if mode not in UPLOAD_MODES:
            raise ValueError(f"Unknown upload mode: {mode}")

        extra = list(extra or [])
        stored = await self._store(event_id, header, extra)

        header_url = stored.header_url
        if header_url is None and mode == 'merge':
            header_url = existing_header

        if mode == 'merge':
            urls = [*(existing_urls or []), *stored.image_urls]
        else:
            urls = list(stored.image_urls)

        if len(urls) > self.max_additional_images:
            logger.warning(
                f"Event {event_id} has {len(urls)} additional images; keeping the last {self.max_additional_images}"
            )
            urls = urls[-self.max_additional_images:]

        return ImageUploadResult(header_url=header_url, image_urls=urls)

    @abstractmethod
    async def _store(self, event_id, header, extra) -> ImageUploadResult:
        """Persist the given files and return URLs for exactly those files."""


class LocalImageStore(ImageStore):
    """Writes images under a directory and returns URLs relative to ``base_url``."""

    def __init__(self, root_dir, base_url='/images', max_additional_images=4):
        super().__init__(max_additional_images)
        self.root_dir = root_dir
        self.base_url = base_url.rstrip('/')

    def _write(self, event_id, image: ImageFile, prefix):
        directory = os.path.join(self.root_dir, str(event_id))
        os.makedirs(directory, exist_ok=True)
        name = f"{prefix}-{_safe_name(image.filename)}"
        with open(os.path.join(directory, name), 'wb') as f:
            f.write(image.content)
        return f"{self.base_url}/{event_id}/{name}"

    async def _store(self, event_id, header, extra):
        result = ImageUploadResult()
        if header is not None:
            result.header_url = self._write(event_id, header, 'header')
        for index, image in enumerate(extra):
            result.image_urls.append(self._write(event_id, image, f"extra{index}"))
        return result


class HttpImageStore(ImageStore):
    """
    Posts images as multipart form data to an upload endpoint.

    The endpoint answers with ``{"header_url": ..., "image_urls": [...]}``.
    """

    def __init__(self, upload_url, api_key=None, max_additional_images=4):
        super().__init__(max_additional_images)
        self.upload_url = upload_url
        self.api_key = api_key
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=30, connect=10)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def _store(self, event_id, header, extra):
        form = aiohttp.FormData()
        form.add_field('event_id', str(event_id))
        if header is not None:
            form.add_field('header', header.content, filename=header.filename, content_type=header.content_type)
        for image in extra:
            form.add_field('images', image.content, filename=image.filename, content_type=image.content_type)

        headers = {'X-API-Key': self.api_key} if self.api_key else None
        session = await self._get_session()
        try:
            async with session.post(self.upload_url, data=form, headers=headers) as response:
                if response.status != 200:
                    body = await response.text()
                    raise ImageUploadError(f"Upload failed with status {response.status}: {body[:200]}")
                data = await response.json()
        except aiohttp.ClientError as e:
            raise ImageUploadError(f"Upload request failed: {e}") from e

        return ImageUploadResult(
            header_url=data.get('header_url'),
            image_urls=list(data.get('image_urls') or []),
        )


@dataclass
class ImageUploadRequest:
    """Images to store before an event is published."""
    header: Optional[ImageFile] = None
    extra: List[ImageFile] = field(default_factory=list)
    mode: str = 'merge'

    def is_empty(self):
        return self.header is None and not self.extra
