"""
Field-level parsers shared by the source drivers.

The upstream APIs send numbers as strings, booleans as "1"/"0", dates as
unix seconds or ISO strings. Every parser here is total: bad input gives
None (or the documented default), never an exception.
"""

from typing import Any, Iterable, List, Optional
from datetime import date, datetime, timezone
import math
import re


class FieldNormalizer:
    """Static conversions used by every mapping function."""

    @staticmethod
    def parse_float(value: Any) -> Optional[float]:
        """Safely parse float value"""
        if value is None or value == "":
            return None
        try:
            return float(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def parse_int(value: Any) -> Optional[int]:
        """Safely parse int value"""
        if value is None or value == "":
            return None
        try:
            return int(float(value))  # Handle "10.0" strings
        except (ValueError, TypeError):
            return None

    @staticmethod
    def parse_datetime(value: Any) -> Optional[datetime]:
        """Parse an ISO-8601 string into a naive UTC datetime."""
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            parsed = value
        else:
            try:
                parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
            except ValueError:
                return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    @staticmethod
    def parse_unix_timestamp(value: Any) -> Optional[datetime]:
        """Unix seconds (int or numeric string) to naive UTC datetime. 0 and blanks are None."""
        seconds = FieldNormalizer.parse_int(value)
        if not seconds:
            return None
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None

    @staticmethod
    def parse_date(value: Any) -> Optional[date]:
        """Parse a YYYY-MM-DD date."""
        if value is None or value == "":
            return None
        try:
            return date.fromisoformat(str(value)[:10])
        except ValueError:
            return None

    @staticmethod
    def parse_is_on_sale(value: Any) -> bool:
        """"1", 1 and True mean on sale; anything else, including missing, does not."""
        if value is True:
            return True
        if isinstance(value, bool):
            return False
        return value == "1" or value == 1

    @staticmethod
    def calculate_savings(sale_price: Any, normal_price: Any) -> int:
        """
        Percentage saved, rounded half up.

        A missing or zero normal price yields 0; a missing sale price counts as 0.
        """
        normal = FieldNormalizer.parse_float(normal_price)
        if not normal:
            return 0
        sale = FieldNormalizer.parse_float(sale_price) or 0.0
        return int(math.floor((normal - sale) / normal * 100 + 0.5))

    @staticmethod
    def slugify(name: Optional[str]) -> Optional[str]:
        if not name:
            return None
        slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
        return slug or None

    @staticmethod
    def upgrade_image_url(url: Optional[str], size: str) -> Optional[str]:
        """Swap an IGDB thumbnail size token and make the URL absolute."""
        if not url:
            return None
        upgraded = url.replace("t_thumb", size, 1)
        if upgraded.startswith("//"):
            upgraded = "https:" + upgraded
        return upgraded

    @staticmethod
    def names(items: Optional[Iterable[Any]], attr: str = "name") -> List[str]:
        """Collect non-empty ``attr`` values from a list of payload objects."""
        if not items:
            return []
        collected = []
        for item in items:
            value = getattr(item, attr, None)
            if value:
                collected.append(value)
        return collected

    @staticmethod
    def unique(values: Iterable[Any]) -> List[Any]:
        """Order-preserving de-duplication."""
        seen = set()
        ordered = []
        for value in values:
            if value is None or value in seen:
                continue
            seen.add(value)
            ordered.append(value)
        return ordered
