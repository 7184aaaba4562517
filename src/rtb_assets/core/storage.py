"""
Letter Storage

Stores the supporting letters attached to device applications on local
disk under settings.upload_dir. Only the relative reference returned by
store_letter is persisted on the application.
"""

import asyncio
import logging
import uuid
from pathlib import Path

from rtb_assets.core.config import settings
from rtb_assets.modules.shared.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

LETTERS_SUBDIR = "applications"
ALLOWED_LETTER_CONTENT_TYPES = {"application/pdf"}
PDF_MAGIC = b"%PDF-"


class LetterRejectedError(ValidationError):
    """Raised when an uploaded letter is not an acceptable PDF."""

    def __init__(self, message: str):
        super().__init__(message, error_code="INVALID_LETTER")


def _upload_root() -> Path:
    return Path(settings.upload_dir).resolve()


def resolve_letter_path(reference: str) -> Path:
    """
    Map a stored reference to its absolute path.

    Raises:
        NotFoundError: If the reference points outside the upload root
    """
    root = _upload_root()
    path = (root / reference).resolve()
    if not path.is_relative_to(root):
        raise NotFoundError("Letter not found", error_code="LETTER_NOT_FOUND")
    return path


def _write_file(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


async def store_letter(content: bytes, content_type: str | None) -> str:
    """
    Validate and persist a letter.

    Args:
        content: Raw file bytes
        content_type: MIME type reported by the client

    Returns:
        Reference relative to the upload root

    Raises:
        LetterRejectedError: Wrong type, empty, or larger than the limit
    """
    if content_type not in ALLOWED_LETTER_CONTENT_TYPES:
        raise LetterRejectedError("Only PDF files are allowed for application letters")
    if not content:
        raise LetterRejectedError("Application letter is empty")
    if len(content) > settings.max_letter_size_bytes:
        max_mb = settings.max_letter_size_bytes // (1024 * 1024)
        raise LetterRejectedError(f"Application letter exceeds the {max_mb}MB limit")
    if not content.startswith(PDF_MAGIC):
        raise LetterRejectedError("Application letter is not a valid PDF document")

    reference = f"{LETTERS_SUBDIR}/application-{uuid.uuid4().hex}.pdf"
    await asyncio.to_thread(_write_file, resolve_letter_path(reference), content)

    logger.info(f"Stored application letter {reference} ({len(content)} bytes)")
    return reference


async def delete_letter(reference: str | None) -> None:
    """Delete a stored letter. Missing files are ignored."""
    if not reference:
        return
    path = resolve_letter_path(reference)
    await asyncio.to_thread(path.unlink, missing_ok=True)
    logger.info(f"Deleted application letter {reference}")
