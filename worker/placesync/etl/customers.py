"""Map Metabase card rows onto ``metabase_customers`` records."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from placesync.core.models import utc_now_iso

logger = logging.getLogger(__name__)

# Card display name -> column, for counters that default to zero.
COUNTER_COLUMNS = {
    "Restaurantes - Comandas por Funcionalidad → # Order": "order_count",
    "Restaurantes - Comandas por Funcionalidad → # POS": "pos_count",
    "Restaurantes - Comandas por Funcionalidad → # WAITER": "waiter_count",
    "Restaurantes - Comandas por Funcionalidad → # Take Away": "takeaway_count",
    "Restaurantes - Comandas por Funcionalidad → # Delivery": "delivery_count",
    "Restaurantes - Comandas por Funcionalidad → # Self Service": "selfservice_count",
    "Modulos": "modulos",
    "Modulos con Uso": "modulos_con_uso",
    "Score Cliente": "score_cliente",
}

OPTIONAL_COUNTER_COLUMNS = {
    "Panel AM - Reservas - Restaurante → Contar": "reservas_count",
    "Panel AM - Control horario por Restaurante → Count": "horario_count",
}

AMOUNT_COLUMNS = {
    "Facturación - Total Histórico → Suma de Amount": "facturacion_total_historico",
    "Facturación - Ultimos 30 días por Restaurante (Pagos) → Sum": "facturacion_ultimos_30_dias",
}

TEXT_COLUMNS = {
    "Subscription Status": "subscription_status",
    "Address": "address",
    "City": "city",
    "Estado Clientes": "estado_clientes",
}

# Columns refreshed on update; ``created_at`` and ``subscription_status`` are left alone.
UPDATE_COLUMNS = (
    "name",
    "created_week",
    *COUNTER_COLUMNS.values(),
    *OPTIONAL_COUNTER_COLUMNS.values(),
    *AMOUNT_COLUMNS.values(),
    "estado_clientes",
    "address",
    "city",
    "updated_at",
)


def _to_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def map_card_row(row: Sequence[Any], index: Dict[str, int]) -> Optional[Dict[str, Any]]:
    def cell(column: str) -> Any:
        position = index.get(column)
        if position is None or position >= len(row):
            return None
        return row[position]

    customer_id = cell("ID")
    name = cell("Name")
    if not customer_id or not name:
        return None

    record: Dict[str, Any] = {
        "id": str(customer_id),
        "name": str(name),
        "created_week": cell("Created: Semana") or utc_now_iso(),
    }
    for column, target in COUNTER_COLUMNS.items():
        record[target] = _to_int(cell(column)) or 0
    for column, target in OPTIONAL_COUNTER_COLUMNS.items():
        record[target] = _to_int(cell(column))
    for column, target in AMOUNT_COLUMNS.items():
        record[target] = _to_float(cell(column))
    for column, target in TEXT_COLUMNS.items():
        record[target] = cell(column) or None
    return record


def map_card_rows(columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> List[Dict[str, Any]]:
    """Map every card row, skipping rows without an id or a name."""
    index = {column: position for position, column in enumerate(columns)}
    mapped: List[Dict[str, Any]] = []
    for position, row in enumerate(rows):
        record = map_card_row(row, index)
        if record is None:
            logger.warning("Skipping card row %d: id and name are required", position)
            continue
        mapped.append(record)
    logger.info("Mapped %d customers from %d card rows", len(mapped), len(rows))
    return mapped


def stamp_records(records: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Return copies carrying fresh ``created_at``/``updated_at`` timestamps."""
    now = utc_now_iso()
    return [{**record, "created_at": now, "updated_at": now} for record in records]
