"""
farm/models.py -- Entity descriptors for catalogs and transactional records.

Every list/create/update/delete handler in the farm API is the same
transactional-audit pattern applied to a different table. An EntityDef
captures what differs between them: the table, which columns are searched
and must be unique, the conflict messages, the pagination bounds, and
whether operators need an approved code before modifying a row.

Derived values (feeding totals, rounded quantities) are computed by
derive_values() so the same rule applies on create and on update.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Table

from farm import tables

MSG_NAME_ACTIVE = "Nombre ya existe (activo)."
MSG_NAME_INACTIVE = "Nombre existe inactivo. Considere restaurarlo."
MSG_NAME_IN_USE = "Nombre en uso por otro activo."


@dataclass(frozen=True)
class EntityDef:
    """Static description of one CRUD entity."""

    key: str  # audit and approval-request table name
    path: str  # URL segment under /api/v1
    table: Table
    search_columns: tuple[str, ...]
    unique_columns: tuple[str, ...] = ()
    conflict_active: str = MSG_NAME_ACTIVE
    conflict_inactive: str = MSG_NAME_INACTIVE
    conflict_restore: str = MSG_NAME_IN_USE
    default_page_size: int = 10
    max_page_size: int = 100
    # Transactional records: operators need a recently verified approval code.
    requires_pass: bool = False
    # Catalog lookups joined into list/get results as "<prefix>_name".
    lookups: dict[str, Table] = field(default_factory=dict)

    @property
    def is_record(self) -> bool:
        return "date" in self.table.c


PROVIDERS = EntityDef(
    key="providers",
    path="providers",
    table=tables.providers,
    search_columns=("name", "ruc"),
    unique_columns=("name", "ruc"),
    conflict_active="Nombre o RUC ya existe en un registro activo.",
    conflict_restore="Nombre o RUC en uso por otro activo.",
)
POOLS = EntityDef(key="pools", path="pools", table=tables.pools, search_columns=("name",), unique_columns=("name",))
LOTS = EntityDef(key="lots", path="lots", table=tables.lots, search_columns=("name",), unique_columns=("name",))
FOOD_TYPES = EntityDef(
    key="food_types", path="food-types", table=tables.food_types, search_columns=("name",), unique_columns=("name",)
)
PACKAGE_TYPES = EntityDef(
    key="package_types",
    path="packages",
    table=tables.package_types,
    search_columns=("name",),
    unique_columns=("name",),
    default_page_size=50,
    max_page_size=500,
)
PRESENTATION_DETAILS = EntityDef(
    key="presentation_details",
    path="details",
    table=tables.presentation_details,
    search_columns=("name",),
    unique_columns=("name",),
    default_page_size=50,
    max_page_size=500,
)

FEEDINGS = EntityDef(
    key="feedings",
    path="feedings",
    table=tables.feedings,
    search_columns=("invoice_number",),
    default_page_size=50,
    max_page_size=200,
    requires_pass=True,
    lookups={
        "lot_id": tables.lots,
        "pool_id": tables.pools,
        "food_type_id": tables.food_types,
        "provider_id": tables.providers,
    },
)
LOSSES = EntityDef(
    key="losses",
    path="losses",
    table=tables.losses,
    search_columns=(),
    default_page_size=50,
    max_page_size=200,
    requires_pass=True,
    lookups={"lot_id": tables.lots, "pool_id": tables.pools},
)
HARVESTS = EntityDef(
    key="harvests",
    path="harvests",
    table=tables.harvests,
    search_columns=("harvest_sheet_number",),
    default_page_size=50,
    max_page_size=200,
    requires_pass=True,
    lookups={
        "lot_id": tables.lots,
        "pool_id": tables.pools,
        "package_type_id": tables.package_types,
        "detail_id": tables.presentation_details,
    },
)

CATALOGS: tuple[EntityDef, ...] = (PROVIDERS, POOLS, LOTS, FOOD_TYPES, PACKAGE_TYPES, PRESENTATION_DETAILS)
RECORDS: tuple[EntityDef, ...] = (FEEDINGS, LOSSES, HARVESTS)
ENTITIES: dict[str, EntityDef] = {e.key: e for e in CATALOGS + RECORDS}


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------


def derive_values(entity: EntityDef, values: dict[str, Any]) -> dict[str, Any]:
    """Apply rounding and computed columns before a write.

    Feedings: unit_price rounds to 3 decimals and total = round(quantity *
    unit_price, 2). Harvests: kilos rounds to 3 decimals, packages to a whole
    number. Partial updates only touch the columns present in `values`.
    """
    out = dict(values)
    if entity is FEEDINGS:
        if "unit_price" in out:
            out["unit_price"] = round(float(out["unit_price"] or 0), 3)
        if "quantity" in out and "unit_price" in out:
            out["total"] = round(float(out["quantity"] or 0) * out["unit_price"], 2)
    elif entity is HARVESTS:
        if out.get("kilos") is not None:
            out["kilos"] = round(float(out["kilos"]), 3)
        if out.get("packages") is not None:
            out["packages"] = round(float(out["packages"]))
    return out
