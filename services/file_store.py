"""Raw file storage for uploaded discovery documents."""
import logging
import os
from typing import List, Optional

from config import Config
from services.errors import StoreError
from services.supabase_service import SupabaseService, get_supabase

logger = logging.getLogger(__name__)


class FileStore:
    def upload(self, path: str, data: bytes, content_type: str) -> str:
        raise NotImplementedError

    def download(self, path: str) -> bytes:
        raise NotImplementedError

    def delete(self, paths: List[str]) -> None:
        raise NotImplementedError


class LocalFileStore(FileStore):
    """Stores files under a local upload folder, mirroring bucket paths."""

    def __init__(self, root: Optional[str] = None):
        self.root = root or Config.UPLOAD_FOLDER
        os.makedirs(self.root, exist_ok=True)

    def _full_path(self, path: str) -> str:
        full_path = os.path.abspath(os.path.join(self.root, path))
        if not full_path.startswith(os.path.abspath(self.root) + os.sep):
            raise StoreError(f"Invalid storage path: {path}")
        return full_path

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        full_path = self._full_path(path)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with open(full_path, 'wb') as f:
            f.write(data)
        return path

    def download(self, path: str) -> bytes:
        full_path = self._full_path(path)
        if not os.path.exists(full_path):
            raise StoreError(f"Stored file not found: {path}")
        with open(full_path, 'rb') as f:
            return f.read()

    def delete(self, paths: List[str]) -> None:
        for path in paths:
            full_path = self._full_path(path)
            try:
                os.remove(full_path)
            except FileNotFoundError:
                logger.debug(f"File already removed: {path}")


class SupabaseFileStore(FileStore):
    """Stores files in the configured Supabase Storage bucket."""

    def __init__(self, supabase: Optional[SupabaseService] = None):
        self.supabase = supabase or get_supabase()

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        result, status = self.supabase.upload_file(path, data, content_type)
        if status not in (200, 201):
            raise StoreError(f"Storage upload failed for {path}: {result}", details={'status': status})
        return path

    def download(self, path: str) -> bytes:
        result, status = self.supabase.download_file(path)
        if status != 200:
            raise StoreError(f"Storage download failed for {path}: {result}", details={'status': status})
        return result

    def delete(self, paths: List[str]) -> None:
        result, status = self.supabase.delete_files(paths)
        if status not in (200, 204):
            raise StoreError(f"Storage delete failed: {result}", details={'status': status})


_file_store = None


def get_file_store() -> FileStore:
    global _file_store
    if _file_store is None:
        supabase = get_supabase()
        _file_store = SupabaseFileStore(supabase) if supabase.enabled else LocalFileStore()
    return _file_store
