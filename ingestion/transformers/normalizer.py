"""
Transform fetched document-store records into rows for the relational targets
"""

from typing import Dict, Any, Optional, List, Tuple, Callable
from datetime import datetime, timedelta, timezone
import logging
import re

from core.exceptions import TransformationError

logger = logging.getLogger(__name__)

IST = timezone(timedelta(hours=5, minutes=30))

_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%d-%m-%Y %H:%M:%S",
    "%d-%m-%Y",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y",
    "%a %b %d %Y %H:%M:%S",
)

_EMOJI_PATTERN = re.compile(
    "["
    "\U0001F000-\U0001FAFF"  # pictographs, emoticons, transport, supplemental symbols
    "\U00002600-\U000027BF"  # misc symbols and dingbats
    "\U0001F1E6-\U0001F1FF"  # regional indicators
    "\U00002B00-\U00002BFF"  # arrows and stars
    "\U0000FE0F"             # variation selector
    "\U0000200D"             # zero width joiner
    "\U000020E3"             # keycap
    "]+"
)


class RecordNormalizer:
    """
    Per-pipeline record transformation.

    Handles:
    - Date strings to epoch milliseconds (IST aware)
    - Emoji removal from free-text fields
    - Flattening nested retailer product catalogs into one row per item
    - Source-side filters (unverified retailers, inactive salesmen)

    Transformations are pure: the same input always yields the same rows.
    """

    def __init__(self, pipeline_name: str, run_key: Optional[str] = None):
        self.pipeline_name = pipeline_name
        self.run_key = run_key
        self._handlers: Dict[str, Callable[[Dict[str, Any]], List[Dict[str, Any]]]] = {
            "RetailerProducts": self._normalize_retailer_products,
            "Retailers": self._normalize_retailer,
            "OrdersNew": self._normalize_order,
            "SalesmanDetails": self._normalize_salesman,
        }
        if pipeline_name not in self._handlers:
            raise ValueError(f"Unknown pipeline: {pipeline_name}")

    def normalize(self, record: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Normalize one fetched record.

        Returns:
            Zero or more target rows (filtered records yield none)
        """
        if not isinstance(record, dict):
            raise TransformationError(
                "Record is not an object",
                context={"pipeline": self.pipeline_name, "record_type": type(record).__name__}
            )
        return self._handlers[self.pipeline_name](record)

    def normalize_all(self, records: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], int]:
        """
        Normalize a full record set.

        Returns:
            (rows, error_count); records that fail are counted, not raised

        Raises:
            TransformationError: If every record of a non-empty set fails
        """
        rows: List[Dict[str, Any]] = []
        error_count = 0
        last_error: Optional[Exception] = None

        for index, record in enumerate(records):
            try:
                rows.extend(self.normalize(record))
            except Exception as e:
                error_count += 1
                last_error = e
                logger.warning(
                    f"Normalization failed for {self.pipeline_name} record {index}: {e}",
                    extra={"error_context": {"pipeline": self.pipeline_name, "index": index}}
                )

        if records and error_count == len(records):
            raise TransformationError(
                f"All {len(records)} records failed normalization",
                context={"pipeline": self.pipeline_name, "error_count": error_count},
                original_exception=last_error
            )

        logger.info(
            f"Normalization complete for {self.pipeline_name}: "
            f"{len(rows)} rows from {len(records)} records, {error_count} failed"
        )
        return rows, error_count

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    def _normalize_retailer_products(self, record: Dict[str, Any]) -> List[Dict[str, Any]]:
        """One row per item of a retailer's catalog"""
        retailer_id = record.get("retailer_id", record.get("firebase_key"))
        products = record.get("products")
        if products is None:
            products = {k: v for k, v in record.items() if k not in ("firebase_key", "retailer_id")}
        if not isinstance(products, dict):
            raise TransformationError(
                "Retailer catalog is not an object",
                context={"retailer_id": retailer_id}
            )

        rows = []
        for item_id, item in products.items():
            if isinstance(item, dict):
                rows.append({**item, "retailer_id": retailer_id, "item_id": item_id})
        return rows

    def _normalize_retailer(self, record: Dict[str, Any]) -> List[Dict[str, Any]]:
        if record.get("verified") == "N":
            return []

        fssai = record.get("fssai_document")
        return [{
            **record,
            "registration_date_milliseconds": self.to_epoch_millis(record.get("registration_date")),
            "last_updated_milliseconds": self.to_epoch_millis(record.get("last_updated")),
            "fssai_document_number": fssai.get("document_number", "") if isinstance(fssai, dict) else "",
            "address1": self.remove_emojis(record.get("address1")),
            "address2": self.remove_emojis(record.get("address2")),
            "shop_name": self.remove_emojis(record.get("shop_name")),
        }]

    def _normalize_order(self, record: Dict[str, Any]) -> List[Dict[str, Any]]:
        row = dict(record)
        row.setdefault("order_id", record.get("firebase_key"))
        row["sync_status_unique_key"] = self.run_key
        return [row]

    def _normalize_salesman(self, record: Dict[str, Any]) -> List[Dict[str, Any]]:
        if self._parse_int(record.get("status")) != 1:
            return []
        row = dict(record)
        for field in ("zsm", "zsm_id", "deputy_asm", "deputy_asm_id", "trade_type"):
            row[field] = record.get(field) or None
        return [row]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def remove_emojis(value: Any) -> Any:
        """Strip emoji code points from text; non-text passes through"""
        if not value or not isinstance(value, str):
            return value
        return _EMOJI_PATTERN.sub("", value)

    @classmethod
    def to_epoch_millis(cls, value: Any) -> int:
        """Milliseconds since epoch, 0 when missing or unparseable"""
        parsed = cls._parse_datetime(value)
        if parsed is None:
            return 0
        return int(parsed.timestamp() * 1000)

    @staticmethod
    def _parse_int(value: Any) -> Optional[int]:
        """Safely parse int value"""
        if value is None or value == "":
            return None
        try:
            return int(float(value))  # Handle "10.0" strings
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _parse_datetime(value: Any) -> Optional[datetime]:
        """Safely parse datetime value; naive values are taken as IST"""
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, (int, float)):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        else:
            text = str(value).strip().replace("IST", "+05:30").replace("Z", "+00:00")
            parsed = None
            try:
                parsed = datetime.fromisoformat(text.replace(" +", "+"))
            except ValueError:
                plain = text.replace("+05:30", "").strip()
                for fmt in _DATETIME_FORMATS:
                    try:
                        parsed = datetime.strptime(plain, fmt)
                        break
                    except ValueError:
                        continue
            if parsed is None:
                return None

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=IST)
        return parsed
