"""
Supabase REST API client for records and file storage.
Uses PostgREST and the Storage API directly - no SDK needed.
"""
import requests
from typing import Optional, List, Dict, Any
from config import Config


class SupabaseService:
    """Thin Supabase REST client returning (body, status_code) tuples."""

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None, bucket: Optional[str] = None):
        self.url = (url or Config.SUPABASE_URL or '').rstrip('/')
        self.key = key or Config.SUPABASE_ANON_KEY
        self.bucket = bucket or Config.STORAGE_BUCKET
        self._enabled = bool(self.url and self.key)

    @property
    def enabled(self) -> bool:
        """Check if Supabase is configured."""
        return self._enabled

    @property
    def headers(self) -> dict:
        """Get request headers for Supabase API."""
        return {
            'apikey': self.key,
            'Authorization': f'Bearer {self.key}',
            'Content-Type': 'application/json',
            'Prefer': 'return=representation'
        }

    def _request(
        self,
        method: str,
        endpoint: str,
        data: Any = None,
        params: dict = None,
        prefer: Optional[str] = None
    ) -> tuple[Any, int]:
        """Make a request to the Supabase REST API."""
        if not self.enabled:
            return {'error': 'Supabase not configured'}, 503

        headers = self.headers
        if prefer:
            headers['Prefer'] = prefer

        try:
            response = requests.request(
                method=method,
                url=f"{self.url}/rest/v1/{endpoint}",
                headers=headers,
                json=data,
                params=params,
                timeout=10
            )

            if response.status_code == 204:
                return None, 204

            result = response.json() if response.text else None
            return result, response.status_code

        except requests.exceptions.RequestException as e:
            return {'error': str(e)}, 500

    # CRUD operations
    def select(self, table: str, columns: str = '*', filters: dict = None) -> tuple[Any, int]:
        """Select rows from a table. Filters use PostgREST syntax ({'id': 'eq.1'})."""
        params = {'select': columns}
        if filters:
            params.update(filters)
        return self._request('GET', table, params=params)

    def insert(self, table: str, data: Any) -> tuple[Any, int]:
        """Insert one row (dict) or many rows (list)."""
        return self._request('POST', table, data=data)

    def update(self, table: str, data: dict, filters: dict) -> tuple[Any, int]:
        """Update rows in a table."""
        return self._request('PATCH', table, data=data, params=filters)

    def upsert(self, table: str, data: Any, on_conflict: Optional[str] = None) -> tuple[Any, int]:
        """Insert or merge on the given conflict columns (comma separated)."""
        params = {'on_conflict': on_conflict} if on_conflict else None
        return self._request(
            'POST', table, data=data, params=params,
            prefer='return=representation,resolution=merge-duplicates'
        )

    def delete(self, table: str, filters: dict) -> tuple[Any, int]:
        """Delete rows from a table."""
        return self._request('DELETE', table, params=filters)

    # Storage operations
    def _storage_headers(self, content_type: Optional[str] = None) -> dict:
        headers = {
            'apikey': self.key,
            'Authorization': f'Bearer {self.key}'
        }
        if content_type:
            headers['Content-Type'] = content_type
        return headers

    def upload_file(self, path: str, file_data: bytes, content_type: str = 'application/octet-stream') -> tuple[Any, int]:
        """Upload (or overwrite) a file in the configured bucket."""
        if not self.enabled:
            return {'error': 'Supabase not configured'}, 503

        headers = self._storage_headers(content_type)
        headers['x-upsert'] = 'true'

        try:
            response = requests.post(
                url=f"{self.url}/storage/v1/object/{self.bucket}/{path}",
                headers=headers,
                data=file_data,
                timeout=30
            )
            result = response.json() if response.text else None
            return result, response.status_code

        except requests.exceptions.RequestException as e:
            return {'error': str(e)}, 500

    def download_file(self, path: str) -> tuple[Any, int]:
        """Download a file from the configured bucket."""
        if not self.enabled:
            return {'error': 'Supabase not configured'}, 503

        try:
            response = requests.get(
                url=f"{self.url}/storage/v1/object/{self.bucket}/{path}",
                headers=self._storage_headers(),
                timeout=30
            )

            if response.status_code == 200:
                return response.content, 200
            result = response.json() if response.text else {'error': 'Download failed'}
            return result, response.status_code

        except requests.exceptions.RequestException as e:
            return {'error': str(e)}, 500

    def delete_files(self, paths: List[str]) -> tuple[Any, int]:
        """Delete files from the configured bucket."""
        if not self.enabled:
            return {'error': 'Supabase not configured'}, 503

        try:
            response = requests.delete(
                url=f"{self.url}/storage/v1/object/{self.bucket}",
                headers=self._storage_headers('application/json'),
                json={'prefixes': paths},
                timeout=10
            )
            result = response.json() if response.text else None
            return result, response.status_code

        except requests.exceptions.RequestException as e:
            return {'error': str(e)}, 500


# Singleton instance
_supabase = None


def get_supabase() -> SupabaseService:
    """Get or create Supabase service instance."""
    global _supabase
    if _supabase is None:
        _supabase = SupabaseService()
    return _supabase
