"""File storage for rendered certificates. Local filesystem only."""
import os
import uuid
import aiofiles
from pathlib import Path
from typing import Optional
from app.config import settings


class FileStorageService:
    """Writes and removes certificate files on local disk."""

    def __init__(self, base_path: Optional[str] = None):
        if settings.FILE_STORAGE_TYPE != "local":
            raise ValueError(f"Unknown storage type: {settings.FILE_STORAGE_TYPE}")
        self.base_path = Path(base_path or settings.FILE_STORAGE_PATH)

    async def save(self, file_bytes: bytes, original_name: str, folder: str = "") -> str:
        """Save file bytes under `folder`. Returns the storage path."""
        ext = Path(original_name).suffix
        stem = Path(original_name).stem or str(uuid.uuid4())
        filename = f"{stem}-{uuid.uuid4().hex[:8]}{ext}"

        target_dir = self.base_path / folder if folder else self.base_path
        target_dir.mkdir(parents=True, exist_ok=True)
        file_path = target_dir / filename
        async with aiofiles.open(file_path, "wb") as f:
            await f.write(file_bytes)
        return str(file_path)

    async def delete(self, storage_path: str) -> None:
        """Delete file from storage. Missing files are ignored."""
        path = Path(storage_path)
        if path.exists():
            os.remove(path)


file_storage = FileStorageService()
