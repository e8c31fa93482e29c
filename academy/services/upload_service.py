"""
Transfer proof uploads
"""

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Optional

from academy.core.clock import utcnow
from academy.core.config import Settings
from academy.core.exceptions import BusinessException

logger = logging.getLogger(__name__)

EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "application/pdf": "pdf",
}


class UploadErrorCode(str, Enum):
    BAD_TYPE = "bad_type"
    TOO_LARGE = "too_large"
    EMPTY = "empty"


class UploadRejected(BusinessException):
    """File refused before it was stored"""

    code = "upload_rejected"
    status_code = 422

    def __init__(self, reason: UploadErrorCode, message: str):
        super().__init__(message, {"reason": reason.value})
        self.reason = reason


class LocalFileStorage:
    """Stores files under a directory served at a public base URL"""

    def __init__(self, root: str, public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    async def save(self, key: str, data: bytes) -> str:
        path = self.root / key
        await asyncio.to_thread(self._write, path, data)
        return f"{self.public_base_url}/{key}"

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


class UploadService:
    """Validates and stores proof-of-payment files"""

    def __init__(self, settings: Settings, storage: Optional[LocalFileStorage] = None):
        self.settings = settings
        self.storage = storage or LocalFileStorage(settings.upload_dir, settings.upload_public_base_url)

    def validate(self, content_type: Optional[str], data: bytes) -> str:
        """Return the file extension for an acceptable file"""
        if not data:
            raise UploadRejected(UploadErrorCode.EMPTY, "The file is empty")
        if content_type not in self.settings.upload_allowed_types or content_type not in EXTENSIONS:
            raise UploadRejected(UploadErrorCode.BAD_TYPE, "Only JPG, PNG, GIF, WEBP or PDF files are accepted")
        if len(data) > self.settings.upload_max_bytes:
            max_mb = self.settings.upload_max_bytes // (1024 * 1024)
            raise UploadRejected(UploadErrorCode.TOO_LARGE, f"The file exceeds {max_mb} MB")
        return EXTENSIONS[content_type]

    async def store_transfer_proof(self, order_number: str, content_type: Optional[str], data: bytes) -> str:
        """Store under transfer-proofs/<order_number>/<timestamp>.<ext> and return the public URL"""
        extension = self.validate(content_type, data)
        key = f"transfer-proofs/{order_number}/{int(utcnow().timestamp() * 1000)}.{extension}"
        url = await self.storage.save(key, data)
        logger.info(f"Transfer proof for order {order_number} stored at {key}")
        return url
