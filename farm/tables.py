"""
farm/tables.py -- SQLAlchemy Core schema for catalogs and transactional records.

Catalogs are small name-keyed lists (providers, pools, lots, food types,
package types, presentation details). Transactional records (feedings,
losses, harvests) reference catalogs by id and carry who created or last
edited them.

No row is ever physically deleted: `active` is the soft-delete flag.
"""

from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, Numeric, String, Table

from core.database import metadata


def _catalog(name: str, name_length: int = 100, *extra: Column) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String(name_length), nullable=False),
        *extra,
        Column("active", Boolean, nullable=False, default=True),
        Column("created_at", String(32), nullable=False),
    )


providers = _catalog("providers", 150, Column("ruc", String(20)))
pools = _catalog("pools")
lots = _catalog("lots")
food_types = _catalog("food_types")
package_types = _catalog("package_types")
presentation_details = _catalog("presentation_details")


def _record(name: str, *columns: Column) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("date", Date, nullable=False),
        Column("lot_id", Integer, ForeignKey("lots.id")),
        Column("pool_id", Integer, ForeignKey("pools.id")),
        *columns,
        Column("active", Boolean, nullable=False, default=True),
        Column("created_by", Integer),
        Column("created_at", String(32), nullable=False),
        Column("updated_by", Integer),
        Column("updated_at", String(32)),
    )


feedings = _record(
    "feedings",
    Column("food_type_id", Integer, ForeignKey("food_types.id")),
    Column("quantity", Numeric(12, 3, asdecimal=False), nullable=False, default=0),
    Column("provider_id", Integer, ForeignKey("providers.id")),
    Column("invoice_number", String(50)),
    Column("unit_price", Numeric(12, 3, asdecimal=False), nullable=False, default=0),
    Column("total", Numeric(14, 2, asdecimal=False), nullable=False, default=0),
)

losses = _record(
    "losses",
    Column("dead", Integer, nullable=False, default=0),
    Column("missing", Integer, nullable=False, default=0),
    Column("surplus", Integer, nullable=False, default=0),
    Column("deformed", Integer, nullable=False, default=0),
)

harvests = _record(
    "harvests",
    Column("fish_count", Integer, nullable=False, default=0),
    Column("harvest_sheet_number", String(50)),
    Column("kilos", Numeric(12, 3, asdecimal=False), nullable=False, default=0),
    Column("packages", Integer),
    Column("package_type_id", Integer, ForeignKey("package_types.id")),
    Column("detail_id", Integer, ForeignKey("presentation_details.id")),
)
