"""Insurance card upload checks and storage.

Cards arrive as up to two JPG/PNG/PDF files of at most 5 MB each. Stored
names follow ``insurance-<millis>-<random><ext>``.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path

from checkin import config
from checkin.errors import InvalidFileType, PayloadTooLarge, TooManyFiles

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".pdf"}
ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/jpg", "image/png", "application/pdf"}


@dataclass
class CardUpload:
    filename: str
    content_type: str
    data: bytes


def check_uploads(files: list[CardUpload]) -> None:
    if len(files) > config.MAX_UPLOAD_FILES:
        raise TooManyFiles(f"Maximum {config.MAX_UPLOAD_FILES} files allowed")
    for upload in files:
        extension = Path(upload.filename or "").suffix.lower()
        if extension not in ALLOWED_EXTENSIONS or upload.content_type.lower() not in ALLOWED_CONTENT_TYPES:
            raise InvalidFileType("Only JPG, PNG, and PDF files are allowed")
        if len(upload.data) > config.MAX_UPLOAD_BYTES:
            limit_mb = config.MAX_UPLOAD_BYTES // (1024 * 1024)
            raise PayloadTooLarge(f"Each file must be less than {limit_mb}MB")


def store_uploads(files: list[CardUpload], upload_dir: str | None = None) -> list[str]:
    """Validate and write ``files``; return the stored names in upload order."""
    check_uploads(files)
    if not files:
        return []
    target = Path(upload_dir or config.UPLOAD_DIR)
    target.mkdir(parents=True, exist_ok=True)

    names = []
    for upload in files:
        extension = Path(upload.filename).suffix.lower()
        name = f"insurance-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{extension}"
        (target / name).write_bytes(upload.data)
        names.append(name)
    logger.info("Stored %d insurance card file(s) in %s", len(names), target)
    return names
