"""
Record repositories with upsert-by-key semantics.

Two implementations share one contract: a Supabase/PostgREST repository for
deployments and a local JSON-file repository for development and tests.
Repeated saves of the same key overwrite, which keeps retries idempotent.
"""
import copy
import json
import logging
import os
import threading
from typing import Any, Dict, Iterable, List, Optional

from config import Config
from services.errors import StoreError
from services.supabase_service import SupabaseService, get_supabase

logger = logging.getLogger(__name__)


class Repository:
    """Storage contract used by every stage of the engine."""

    def upsert_by_key(self, table: str, row: Dict[str, Any], key: Iterable[str]) -> Dict[str, Any]:
        raise NotImplementedError

    def select(self, table: str, filters: Optional[Dict[str, Any]] = None,
               order_by: Optional[str] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def insert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def update(self, table: str, changes: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def delete(self, table: str, filters: Dict[str, Any]) -> int:
        raise NotImplementedError

    def get(self, table: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Return the first matching row or None."""
        rows = self.select(table, filters)
        return rows[0] if rows else None


def _matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    if not filters:
        return True
    for field_name, expected in filters.items():
        value = row.get(field_name)
        if isinstance(expected, (list, tuple, set)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class LocalRepository(Repository):
    """In-memory tables with optional JSON file persistence, one file per table."""

    def __init__(self, persist_dir: Optional[str] = None):
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._persist_dir = persist_dir

        if self._persist_dir:
            os.makedirs(self._persist_dir, exist_ok=True)

    def _table(self, table: str) -> List[Dict[str, Any]]:
        if table not in self._tables:
            self._tables[table] = self._load(table)
        return self._tables[table]

    def upsert_by_key(self, table: str, row: Dict[str, Any], key: Iterable[str]) -> Dict[str, Any]:
        key = list(key)
        missing = [k for k in key if row.get(k) is None]
        if missing:
            raise StoreError(f"Upsert into {table} is missing key fields: {', '.join(missing)}")

        with self._lock:
            rows = self._table(table)
            key_filter = {k: row[k] for k in key}
            for existing in rows:
                if _matches(existing, key_filter):
                    existing.update(copy.deepcopy(row))
                    stored = existing
                    break
            else:
                stored = copy.deepcopy(row)
                rows.append(stored)
            self._persist(table)
            return copy.deepcopy(stored)

    def select(self, table: str, filters: Optional[Dict[str, Any]] = None,
               order_by: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._table(table) if _matches(r, filters)]

        if order_by:
            descending = order_by.startswith('-')
            field_name = order_by.lstrip('-')
            rows.sort(key=lambda r: (r.get(field_name) is None, r.get(field_name) or ''), reverse=descending)
        return rows

    def insert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        with self._lock:
            stored = [copy.deepcopy(r) for r in rows]
            self._table(table).extend(stored)
            self._persist(table)
            return [copy.deepcopy(r) for r in stored]

    def update(self, table: str, changes: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            updated = []
            for row in self._table(table):
                if _matches(row, filters):
                    row.update(copy.deepcopy(changes))
                    updated.append(copy.deepcopy(row))
            if updated:
                self._persist(table)
            return updated

    def delete(self, table: str, filters: Dict[str, Any]) -> int:
        with self._lock:
            rows = self._table(table)
            kept = [r for r in rows if not _matches(r, filters)]
            removed = len(rows) - len(kept)
            self._tables[table] = kept
            if removed:
                self._persist(table)
            return removed

    def _persist(self, table: str) -> None:
        """Save a table to disk if persistence is enabled."""
        if not self._persist_dir:
            return

        file_path = os.path.join(self._persist_dir, f"{table}.json")
        with open(file_path, 'w') as f:
            json.dump(self._tables.get(table, []), f, indent=2)

    def _load(self, table: str) -> List[Dict[str, Any]]:
        """Load a table from disk."""
        if not self._persist_dir:
            return []

        file_path = os.path.join(self._persist_dir, f"{table}.json")
        if not os.path.exists(file_path):
            return []

        try:
            with open(file_path, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Error loading table {table} from {file_path}: {e}")
            return []


class SupabaseRepository(Repository):
    """Repository backed by Supabase PostgREST."""

    def __init__(self, supabase: Optional[SupabaseService] = None):
        self.supabase = supabase or get_supabase()

    @staticmethod
    def _filters(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
        params = {}
        for field_name, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set)):
                params[field_name] = f"in.({','.join(str(v) for v in value)})"
            elif value is None:
                params[field_name] = 'is.null'
            elif isinstance(value, bool):
                params[field_name] = f"is.{str(value).lower()}"
            else:
                params[field_name] = f"eq.{value}"
        return params

    @staticmethod
    def _check(table: str, result: Any, status: int, allowed=(200, 201, 204)) -> Any:
        if status not in allowed:
            raise StoreError(f"Supabase error on {table}: {result}", details={'status': status})
        return result

    def upsert_by_key(self, table: str, row: Dict[str, Any], key: Iterable[str]) -> Dict[str, Any]:
        result, status = self.supabase.upsert(table, row, on_conflict=','.join(key))
        result = self._check(table, result, status)
        return result[0] if result else row

    def select(self, table: str, filters: Optional[Dict[str, Any]] = None,
               order_by: Optional[str] = None) -> List[Dict[str, Any]]:
        params = self._filters(filters)
        if order_by:
            direction = 'desc' if order_by.startswith('-') else 'asc'
            params['order'] = f"{order_by.lstrip('-')}.{direction}"
        result, status = self.supabase.select(table, filters=params)
        return self._check(table, result, status, allowed=(200,)) or []

    def insert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not rows:
            return []
        result, status = self.supabase.insert(table, rows)
        return self._check(table, result, status) or []

    def update(self, table: str, changes: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        result, status = self.supabase.update(table, changes, self._filters(filters))
        return self._check(table, result, status) or []

    def delete(self, table: str, filters: Dict[str, Any]) -> int:
        result, status = self.supabase.delete(table, self._filters(filters))
        result = self._check(table, result, status)
        return len(result) if isinstance(result, list) else 0


# Global instance
_repository = None


def get_repository() -> Repository:
    """Get the configured repository (Supabase when configured, else local files)."""
    global _repository
    if _repository is None:
        supabase = get_supabase()
        if supabase.enabled:
            _repository = SupabaseRepository(supabase)
        else:
            logger.info(f"Supabase not configured, using local record store at {Config.DATA_DIR}")
            _repository = LocalRepository(Config.DATA_DIR)
    return _repository
