"""
Image upload handling: validation plus storage through a `BlobStore`.
"""

import logging
from typing import Optional

from core.validation import UploadValidator
from providers.blob_store import BlobStore

logger = logging.getLogger(__name__)


class UploadService:
    """Validates uploaded images and stores them"""

    def __init__(self, blob_store: BlobStore):
        self.blob_store = blob_store

    async def store_image(
        self,
        data: bytes,
        filename: Optional[str],
        content_type: Optional[str],
        prefix: str = "",
    ) -> str:
        """Validate a JPEG/PNG upload and return its public URL"""
        extension = UploadValidator.validate_image(filename, content_type, len(data))
        url = await self.blob_store.put(data, extension, prefix)

        logger.info(
            f"Stored {prefix or 'image'} upload",
            extra={"upload_filename": filename, "size": len(data), "source": self.blob_store.source_name},
        )
        return url
