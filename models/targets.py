"""
Declarative mappings of the relational target tables.

A TableMapping is an ordered list of {record field -> column} pairs plus the
natural-key columns. It replaces per-entity hand-written INSERT statements:
the bulk writer builds one parameterized upsert from it for any pipeline.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional, Tuple
import json

from sqlalchemy import BigInteger, Column, MetaData, String, Table, Text, UniqueConstraint
from sqlalchemy.types import TypeEngine

from models.base import Base


@dataclass(frozen=True)
class ColumnMapping:
    """One record field written to one column."""
    field: str
    column: str
    type_: Optional[TypeEngine] = None

    def sql_type(self) -> TypeEngine:
        return self.type_ if self.type_ is not None else String(255)

    def coerce(self, value: Any) -> Any:
        """
        Convert a document store value to the column's Python type.

        Document store fields are loosely typed (a price may arrive as 10.5,
        "10.5" or 10), while strict drivers such as asyncpg reject a float
        bound to a VARCHAR parameter.

        Raises:
            ValueError: If the value cannot be represented in the column type
        """
        if value is None:
            return None

        try:
            python_type = self.sql_type().python_type
        except NotImplementedError:
            return value

        if python_type is str:
            if isinstance(value, str):
                return value
            if isinstance(value, (dict, list)):
                return json.dumps(value, default=str)
            if isinstance(value, bool):
                return "1" if value else "0"
            return str(value)

        if isinstance(value, str):
            value = value.strip()
            if value == "":
                return None

        if python_type is int:
            number = _to_decimal(value, self.column)
            if number != number.to_integral_value():
                raise ValueError(f"Column {self.column} expects an integer, got {value!r}")
            return int(number)

        if python_type is Decimal:
            return _to_decimal(value, self.column)

        if python_type is float:
            return float(_to_decimal(value, self.column))

        return value


def _to_decimal(value: Any, column: str) -> Decimal:
    if isinstance(value, (dict, list)):
        raise ValueError(f"Column {column} expects a number, got {type(value).__name__}")
    try:
        number = Decimal(str(int(value)) if isinstance(value, bool) else str(value))
    except InvalidOperation:
        raise ValueError(f"Column {column} expects a number, got {value!r}")
    if not number.is_finite():
        raise ValueError(f"Column {column} expects a finite number, got {value!r}")
    return number


@dataclass(frozen=True)
class TableMapping:
    """Target table, its column mappings and its natural key."""
    table_name: str
    columns: Tuple[ColumnMapping, ...]
    natural_key: Tuple[str, ...]
    schema: Optional[str] = None

    def __post_init__(self):
        names = [c.column for c in self.columns]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate column in mapping for {self.table_name}")
        if not self.natural_key:
            raise ValueError(f"Mapping for {self.table_name} needs a natural key")
        missing = [k for k in self.natural_key if k not in names]
        if missing:
            raise ValueError(f"Natural key columns {missing} not mapped for {self.table_name}")

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(c.column for c in self.columns)

    @property
    def mutable_columns(self) -> Tuple[str, ...]:
        """Columns overwritten when a row with the same natural key exists."""
        return tuple(c.column for c in self.columns if c.column not in self.natural_key)

    def row_for(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Project a record onto the mapped columns; missing fields become NULL.

        Raises:
            ValueError: If a field cannot be coerced to its column type
        """
        return {c.column: c.coerce(record.get(c.field)) for c in self.columns}

    def to_table(self, metadata: MetaData) -> Table:
        """Table object for statement building (reused if already registered)."""
        key = f"{self.schema}.{self.table_name}" if self.schema else self.table_name
        if key in metadata.tables:
            return metadata.tables[key]

        return Table(
            self.table_name,
            metadata,
            *[Column(c.column, c.sql_type()) for c in self.columns],
            UniqueConstraint(*self.natural_key, name=f"uq_{self.table_name.lower()}_natural_key"),
            schema=self.schema,
        )


def same_name_columns(names: Iterable[str], type_: Optional[TypeEngine] = None) -> Tuple[ColumnMapping, ...]:
    """Mappings where the record field and the column share a name."""
    return tuple(ColumnMapping(field=n, column=n, type_=type_) for n in names)


# ============================================================================
# Target tables
# ============================================================================

RETAILER_PRODUCT_FIELDS = (
    "price", "mrp", "dealer_price", "market_price", "offer_price",
    "item_disc", "offer_disc", "scheme_amt", "vat_amt", "vat_percent",
    "order_qty", "status", "update_status", "last_updated",
)

RETAILER_PRODUCTS = TableMapping(
    table_name="Retailer_Products",
    columns=same_name_columns(("retailer_id", "item_id")) + same_name_columns(RETAILER_PRODUCT_FIELDS),
    natural_key=("retailer_id", "item_id"),
)

RETAILER_MASTER_FIELDS = (
    "registration_date", "new_user", "aadhar_number", "app_version", "area",
    "beat_name", "blacklist_flag", "city", "email", "fssai_document_number", "pan_number",
    "phone", "old_phone", "retailer_name", "secondary_number", "state", "store_owner",
    "user_name", "gst_number", "verified", "shop_name", "agent_id", "wallet",
    "fcm_device_token", "last_updated", "latitude", "longitude", "delivery_duration",
    "delivery_duration2", "delivery_cutoff", "credit_mov", "user_type", "store_series",
    "store_type", "store_type_2", "store_opening_time", "store_closing_time", "sub_area",
    "sub_area1", "super_kredit", "lunch_closer", "lunch_start_time", "lunch_end_time",
    "weekly_off", "tata_407_accessibility", "last_order_number", "pincode",
    "reason_blacklisted", "blacklisted_date", "id",
)

RETAILERS = TableMapping(
    table_name="Retailer_Masters",
    columns=(
        same_name_columns(("retailer_id",))
        + same_name_columns(RETAILER_MASTER_FIELDS)
        + same_name_columns(("address1", "address2"), Text())
        + same_name_columns(("registration_date_milliseconds", "last_updated_milliseconds"), BigInteger())
    ),
    natural_key=("retailer_id",),
)

ORDERS_NEW = TableMapping(
    table_name="Orders_News",
    columns=same_name_columns((
        "order_id", "customer_id", "retailer_id", "order_date", "delivery_date",
        "total_amount", "status", "sync_status_unique_key",
    )),
    natural_key=("order_id",),
)

SALESMAN_DETAILS = TableMapping(
    table_name="Salesman_Details",
    columns=same_name_columns((
        "salesman_id", "app_version", "asm", "asm_id", "category", "last_login",
        "password", "phone_number", "salesman_name", "salesman_type", "store_series",
        "status", "zsm", "zsm_id", "deputy_asm", "deputy_asm_id", "trade_type",
    )),
    natural_key=("salesman_id",),
)

TARGET_MAPPINGS = (RETAILER_PRODUCTS, RETAILERS, ORDERS_NEW, SALESMAN_DETAILS)

# Register targets on the shared metadata so init_db can create them
for _mapping in TARGET_MAPPINGS:
    _mapping.to_table(Base.metadata)
