"""
Blob Store Providers

Persist uploaded bytes and hand back the URL clients use to fetch them.
`LocalBlobStore` writes under `UPLOAD_DIR` and returns URLs below
`PUBLIC_UPLOAD_BASE_URL`; a cloud bucket can implement the same interface.
"""

import asyncio
import logging
import os
import time
import uuid
from abc import ABC, abstractmethod

from core import config
from core.exceptions import UploadError

logger = logging.getLogger(__name__)


class BlobStore(ABC):
    """Abstract base class for upload storage"""

    @abstractmethod
    async def put(self, data: bytes, extension: str, prefix: str = "") -> str:
        """Store data and return its public URL"""
        pass

    @property
    @abstractmethod
    def source_name(self) -> str:
        pass


class LocalBlobStore(BlobStore):
    """Store uploads on the local filesystem"""

    def __init__(self, root_dir: str = None, base_url: str = None):
        self.root_dir = root_dir or config.UPLOAD_DIR
        self.base_url = (base_url or config.PUBLIC_UPLOAD_BASE_URL).rstrip("/")

    @property
    def source_name(self) -> str:
        return "local"

    def _object_name(self, extension: str, prefix: str) -> str:
        name = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}{extension}"
        return f"{prefix}-{name}" if prefix else name

    def _write(self, path: str, data: bytes):
        os.makedirs(self.root_dir, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)

    async def put(self, data: bytes, extension: str, prefix: str = "") -> str:
        object_name = self._object_name(extension, prefix)
        path = os.path.join(self.root_dir, object_name)

        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            logger.error(f"Failed to store upload {object_name}: {e}")
            raise UploadError(object_name, "Could not store file")

        logger.debug(f"Stored upload {object_name} ({len(data)} bytes)")
        return f"{self.base_url}/{object_name}"
