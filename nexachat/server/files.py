"""
Local file store for uploads attached to messages
"""
import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path

from nexachat.db.errors import InvalidInput

log = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {
    ".jpeg", ".jpg", ".png", ".gif", ".webp",
    ".mp4", ".mov", ".avi", ".mkv", ".webm",
    ".mp3", ".ogg", ".wav", ".m4a",
    ".pdf", ".doc", ".docx", ".txt", ".zip", ".rar",
}
URL_PREFIX = "/uploads/"


@dataclass
class StoredFile:
    name: str   # original file name
    path: str   # public path, e.g. /uploads/<stored name>
    size: int

    def to_dict(self) -> dict:
        return {"fileName": self.name, "filePath": self.path, "fileSize": self.size}


class FileStore:
    def __init__(self, root: str = "uploads", max_bytes: int = 10 * 1024 * 1024):
        self.root = Path(root)
        self.max_bytes = max_bytes
        self.root.mkdir(parents=True, exist_ok=True)

    def save(self, original_name: str, data: bytes) -> StoredFile:
        ext = os.path.splitext(original_name or "")[1].lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise InvalidInput(f"unsupported file type '{ext or original_name}'")
        if len(data) > self.max_bytes:
            raise InvalidInput(f"file exceeds {self.max_bytes} bytes")
        stored = f"{uuid.uuid4().hex}{ext}"
        (self.root / stored).write_bytes(data)
        log.info("[files] stored %s as %s (%d bytes)", original_name, stored, len(data))
        return StoredFile(name=os.path.basename(original_name), path=URL_PREFIX + stored, size=len(data))

    def resolve(self, path: str) -> Path:
        """Public path -> file on disk, confined to the upload directory."""
        name = os.path.basename(path[len(URL_PREFIX):] if path.startswith(URL_PREFIX) else path)
        return self.root / name

    def delete(self, path: str) -> bool:
        target = self.resolve(path)
        if not target.is_file():
            return False
        target.unlink()
        log.info("[files] removed %s", target.name)
        return True
