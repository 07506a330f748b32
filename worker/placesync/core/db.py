"""Database helpers for the worker.

The store is the Supabase Postgres instance reached directly through
``DATABASE_URL``. Three tables are involved: ``google_maps_pending`` (staging),
``metabase_customers`` (reference customers) and ``google_maps`` (enriched
places).
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from psycopg2 import extras, pool

from placesync.core.config import Settings, get_settings
from placesync.core.models import format_instant

logger = logging.getLogger(__name__)

PENDING_TABLE = "google_maps_pending"
CUSTOMERS_TABLE = "metabase_customers"
PLACES_TABLE = "google_maps"
TABLES = (PENDING_TABLE, CUSTOMERS_TABLE, PLACES_TABLE)

PLACE_COLUMNS = (
    "metabase_id",
    "place_id",
    "google_id",
    "cid",
    "kgmid",
    "reviews_id",
    "name",
    "phone",
    "site",
    "category",
    "subtypes",
    "full_address",
    "borough",
    "street",
    "city",
    "postal_code",
    "state",
    "country",
    "latitude",
    "longitude",
    "rating",
    "reviews",
    "reviews_per_score",
    "photos_count",
    "photo",
    "working_hours",
    "about",
    "range",
    "prices",
    "description",
    "typical_time_spent",
    "verified",
    "reservation_links",
    "booking_appointment_link",
    "menu_link",
    "order_links",
    "location_link",
)

CUSTOMER_COLUMNS = (
    "id",
    "name",
    "created_week",
    "order_count",
    "pos_count",
    "waiter_count",
    "takeaway_count",
    "delivery_count",
    "selfservice_count",
    "reservas_count",
    "horario_count",
    "subscription_status",
    "address",
    "city",
    "facturacion_total_historico",
    "facturacion_ultimos_30_dias",
    "modulos",
    "modulos_con_uso",
    "score_cliente",
    "estado_clientes",
)


def _placeholders(columns: Iterable[str]) -> str:
    return ", ".join(f"%({column})s" for column in columns)


_INSERT_PLACE = f"""
INSERT INTO {PLACES_TABLE} (
    {", ".join(PLACE_COLUMNS)},
    created_at,
    updated_at
) VALUES (
    {_placeholders(PLACE_COLUMNS)},
    NOW(),
    COALESCE(%(updated_at)s::timestamptz, NOW())
)
"""

_UPDATE_PLACE = f"""
UPDATE {PLACES_TABLE} SET
    {", ".join(f"{column} = %({column})s" for column in PLACE_COLUMNS if column != "metabase_id")},
    updated_at = COALESCE(%(updated_at)s::timestamptz, NOW())
WHERE metabase_id = %(metabase_id)s
"""

_INSERT_CUSTOMER = f"""
INSERT INTO {CUSTOMERS_TABLE} (
    {", ".join(CUSTOMER_COLUMNS)},
    created_at,
    updated_at
) VALUES (
    {_placeholders(CUSTOMER_COLUMNS)},
    COALESCE(%(created_at)s::timestamptz, NOW()),
    COALESCE(%(updated_at)s::timestamptz, NOW())
)
"""

_UPDATE_CUSTOMER = f"""
UPDATE {CUSTOMERS_TABLE} SET
    {", ".join(f"{column} = %({column})s" for column in CUSTOMER_COLUMNS if column not in ("id", "subscription_status"))},
    updated_at = COALESCE(%(updated_at)s::timestamptz, NOW())
WHERE id::text = %(id)s
"""

_PENDING_COLUMNS = "id, metabase_id, name, address, city, place_id, created_at, updated_at"


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _place_params(row: Dict[str, Any]) -> Dict[str, Any]:
    params = {column: row.get(column) for column in PLACE_COLUMNS}
    params["updated_at"] = row.get("updated_at")
    return params


def _customer_params(record: Dict[str, Any]) -> Dict[str, Any]:
    params = {column: record.get(column) for column in CUSTOMER_COLUMNS}
    params["created_at"] = record.get("created_at")
    params["updated_at"] = record.get("updated_at")
    return params


class PlacesStore:
    """Thin query layer over a pooled psycopg2 connection."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        connection_pool: Optional[pool.SimpleConnectionPool] = None,
        minconn: int = 1,
        maxconn: int = 5,
    ) -> None:
        self.settings = settings
        self._pool = connection_pool
        self._minconn = minconn
        self._maxconn = maxconn

    def init_pool(self) -> pool.SimpleConnectionPool:
        """Initialise and return the connection pool."""
        if self._pool is None:
            settings = self.settings or get_settings()
            if not settings.database_url:
                raise RuntimeError("DATABASE_URL is required for database connections")
            self._pool = pool.SimpleConnectionPool(
                self._minconn,
                self._maxconn,
                dsn=settings.database_url,
                connect_timeout=10,
            )
            logger.info("Database connection pool initialised")
        return self._pool

    @contextmanager
    def get_connection(self):
        """Context manager yielding a pooled connection, rolled back on error."""
        pg_pool = self.init_pool()
        conn = pg_pool.getconn()
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            pg_pool.putconn(conn)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None

    def _fetch(self, sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
            conn.commit()
        return [dict(row) for row in rows]

    def _execute(self, sql: str, params: Dict[str, Any]) -> int:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                affected = cur.rowcount
            conn.commit()
        return affected

    # ---------- staging ----------

    def fetch_pending(self, limit: Optional[int] = None, only_pending: bool = True) -> List[Dict[str, Any]]:
        where = "WHERE place_id IS NULL" if only_pending else ""
        sql = f"SELECT {_PENDING_COLUMNS} FROM {PENDING_TABLE} {where} ORDER BY created_at DESC"
        params: Dict[str, Any] = {}
        if limit:
            sql += " LIMIT %(limit)s"
            params["limit"] = limit
        return self._fetch(sql, params)

    def fetch_pending_by_ids(self, ids: Sequence[Any]) -> List[Dict[str, Any]]:
        if not ids:
            return []
        sql = f"SELECT {_PENDING_COLUMNS} FROM {PENDING_TABLE} WHERE id::text = ANY(%(ids)s) ORDER BY created_at DESC"
        return self._fetch(sql, {"ids": [str(i) for i in ids]})

    def mark_pending_processed(self, record_id: str, marker: str) -> int:
        sql = f"UPDATE {PENDING_TABLE} SET place_id = %(marker)s, updated_at = NOW() WHERE id::text = %(id)s"
        return self._execute(sql, {"marker": marker, "id": str(record_id)})

    def delete_pending(self, ids: Sequence[Any]) -> int:
        if not ids:
            return 0
        sql = f"DELETE FROM {PENDING_TABLE} WHERE id::text = ANY(%(ids)s)"
        return self._execute(sql, {"ids": [str(i) for i in ids]})

    def delete_marked_pending(self, marker_prefix: str) -> int:
        sql = f"DELETE FROM {PENDING_TABLE} WHERE place_id LIKE %(pattern)s"
        return self._execute(sql, {"pattern": f"{_escape_like(marker_prefix)}%"})

    # ---------- customers ----------

    def fetch_customers_by_ids(self, ids: Sequence[Any]) -> List[Dict[str, Any]]:
        if not ids:
            return []
        sql = f"SELECT id, name, address, city FROM {CUSTOMERS_TABLE} WHERE id::text = ANY(%(ids)s)"
        return self._fetch(sql, {"ids": [str(i) for i in ids]})

    def search_customers_by_names(self, names: Sequence[str]) -> List[Dict[str, Any]]:
        if not names:
            return []
        sql = f"SELECT id, name, address, city FROM {CUSTOMERS_TABLE} WHERE name ILIKE ANY(%(patterns)s)"
        return self._fetch(sql, {"patterns": [f"%{_escape_like(name)}%" for name in names]})

    def existing_customer_ids(self, ids: Sequence[Any]) -> Set[str]:
        rows = self.fetch_customers_by_ids(ids)
        return {str(row["id"]) for row in rows}

    def insert_customers(self, records: Sequence[Dict[str, Any]]) -> int:
        if not records:
            return 0
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                extras.execute_batch(cur, _INSERT_CUSTOMER, [_customer_params(r) for r in records])
            conn.commit()
        return len(records)

    def update_customers(self, records: Sequence[Dict[str, Any]]) -> int:
        if not records:
            return 0
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                extras.execute_batch(cur, _UPDATE_CUSTOMER, [_customer_params(r) for r in records])
            conn.commit()
        return len(records)

    # ---------- places ----------

    def find_places_by_external_key(self, external_key: str) -> List[Dict[str, Any]]:
        sql = f"SELECT id, metabase_id, place_id, created_at FROM {PLACES_TABLE} WHERE metabase_id = %(key)s"
        return self._fetch(sql, {"key": external_key})

    def find_place_conflicts(self, place_id: str, external_key: str) -> List[Dict[str, Any]]:
        sql = (
            f"SELECT id, metabase_id, place_id FROM {PLACES_TABLE} "
            "WHERE place_id = %(place_id)s AND metabase_id IS DISTINCT FROM %(key)s"
        )
        return self._fetch(sql, {"place_id": place_id, "key": external_key})

    def insert_place(self, row: Dict[str, Any]) -> int:
        return self._execute(_INSERT_PLACE, _place_params(row))

    def update_place(self, row: Dict[str, Any]) -> int:
        return self._execute(_UPDATE_PLACE, _place_params(row))

    def count_rows(self, table: str) -> int:
        if table not in TABLES:
            raise ValueError(f"unknown table {table}")
        rows = self._fetch(f"SELECT COUNT(*) AS total FROM {table}", {})
        return int(rows[0]["total"]) if rows else 0

    def table_stats(self) -> Dict[str, Dict[str, Any]]:
        """Row count and most recent ``updated_at`` for every table the worker touches."""
        stats: Dict[str, Dict[str, Any]] = {}
        for table in TABLES:
            rows = self._fetch(f"SELECT COUNT(*) AS total, MAX(updated_at) AS last_updated FROM {table}", {})
            row = rows[0] if rows else {}
            last_updated = row.get("last_updated")
            if isinstance(last_updated, datetime):
                last_updated = format_instant(last_updated)
            stats[table] = {"count": int(row.get("total") or 0), "last_updated": last_updated}
        return stats
