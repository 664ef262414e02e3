import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from lending.exceptions import InvalidAttachmentError, StorageError

logger = logging.getLogger(__name__)

ALLOWED_MEDIA_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
}

REFERENCE_PREFIX = "uploads"


class AttachmentManager:
    """Proof images on disk, addressed by `uploads/<name>` references.

    Each reference is owned by exactly one field of one borrow record, so
    there is no reference counting: whoever clears the field deletes the
    file.
    """

    def __init__(self, upload_dir):
        self.upload_dir = Path(upload_dir)
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def store(self, content: bytes, media_type: str) -> str:
        extension = ALLOWED_MEDIA_TYPES.get((media_type or "").lower())
        if extension is None:
            raise InvalidAttachmentError(f"media type {media_type} is not allowed")
        if not content:
            raise InvalidAttachmentError("file is empty")

        filename = f"proof_{uuid.uuid4().hex}{extension}"
        path = self.upload_dir / filename
        try:
            with open(path, "xb") as fh:
                fh.write(content)
        except OSError as e:
            raise StorageError("attachment write", str(e))

        logger.info(f"Stored attachment {filename} ({len(content)} bytes)")
        return f"{REFERENCE_PREFIX}/{filename}"

    def delete(self, ref: Optional[str]) -> None:
        if not ref:
            return
        path = self.path_for(ref)
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError("attachment delete", str(e))
        logger.info(f"Deleted attachment {ref}")

    def discard(self, *refs: Optional[str]) -> None:
        """Delete attachments whose owning record is already committed or gone.

        A failure here cannot be reported to the caller any more, so it is
        only logged.
        """
        for ref in refs:
            try:
                self.delete(ref)
            except StorageError as e:
                logger.error(f"Orphaned attachment {ref} left on disk: {e}")

    def exists(self, ref: Optional[str]) -> bool:
        return bool(ref) and self.path_for(ref).is_file()

    def path_for(self, ref: str) -> Path:
        # only the final component is trusted; references never name subdirectories
        return self.upload_dir / Path(ref).name
