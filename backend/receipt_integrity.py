"""Trust boundary for receipt data.

Everything that arrives from outside (Gemini output, a decoded share link,
a request body) goes through validate_receipt before it becomes a Receipt.
The validator repairs what it can and only rejects documents that lack the
minimum shape: an object with a string restaurant name and an item list.
"""

import logging
import math
import re
from typing import Any, Dict, List, Mapping, Optional, Set

from receipt_models import Receipt, ReceiptItem

logger = logging.getLogger("tabsplit")

MAX_TEXT_LENGTH = 255
TAG_PATTERN = re.compile(r"<[^>]*>?")

DEFAULT_CURRENCY = "$"
DEFAULT_DESCRIPTION = "Unknown Item"
MONEY_FIELDS = ("subtotal", "tax", "tip", "total")


def sanitize_string(raw: Any) -> str:
    if not isinstance(raw, str):
        return ""
    text = TAG_PATTERN.sub("", raw).strip()
    # Truncation can expose trailing whitespace; strip again so a second pass is a no-op.
    return text[:MAX_TEXT_LENGTH].rstrip()


def sanitize_number(raw: Any, default: float = 0.0) -> float:
    if isinstance(raw, bool) or raw is None:
        return default
    if isinstance(raw, (int, float)):
        try:
            value = float(raw)
        except OverflowError:
            return default
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            return default
    else:
        return default
    if not math.isfinite(value):
        return default
    return max(0.0, value)


def _pick(raw: Mapping[str, Any], camel: str, snake: str) -> Any:
    if camel in raw:
        return raw[camel]
    return raw.get(snake)


def _text_or_default(value: Any, default: str) -> str:
    # Fall back after sanitizing so a tag-only value decodes to the same default.
    text = sanitize_string(value) if isinstance(value, str) else ""
    return text or sanitize_string(default)


def _item_id(value: Any, idx: int, seen: Set[str]) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    item_id = sanitize_string(value) if isinstance(value, str) else ""
    if not item_id or item_id in seen:
        item_id = f"shared-{idx}"
        suffix = 1
        while item_id in seen:
            item_id = f"shared-{idx}-{suffix}"
            suffix += 1
    seen.add(item_id)
    return item_id


def _sanitize_items(raw_items: List[Any]) -> List[ReceiptItem]:
    items: List[ReceiptItem] = []
    seen: Set[str] = set()
    for idx, raw_item in enumerate(raw_items):
        if raw_item is None:
            raise TypeError(f"item {idx} is null")
        if not isinstance(raw_item, Mapping):
            raw_item = {}
        original = _pick(raw_item, "originalDescription", "original_description")
        items.append(
            ReceiptItem(
                id=_item_id(raw_item.get("id"), idx, seen),
                quantity=sanitize_number(raw_item.get("quantity"), default=1.0),
                description=_text_or_default(raw_item.get("description"), DEFAULT_DESCRIPTION),
                price=sanitize_number(raw_item.get("price"), default=0.0),
                original_description=sanitize_string(original) if isinstance(original, str) else None,
            )
        )
    return items


def validate_receipt(raw: Any) -> Optional[Receipt]:
    """Return a trusted Receipt, or None when the input is structurally invalid.

    Never raises. Item prices are not reconciled against the total: receipts
    carry discounts, service charges and rounding that the items do not show.
    """
    try:
        if not isinstance(raw, Mapping):
            logger.info("Receipt rejected: payload is not an object")
            return None
        restaurant_name = _pick(raw, "restaurantName", "restaurant_name")
        if not isinstance(restaurant_name, str):
            logger.info("Receipt rejected: restaurantName is not a string")
            return None
        raw_items = raw.get("items")
        if not isinstance(raw_items, list):
            logger.info("Receipt rejected: items is not a list")
            return None

        totals: Dict[str, float] = {
            key: sanitize_number(raw.get(key), default=0.0) for key in MONEY_FIELDS
        }
        receipt = Receipt(
            restaurant_name=sanitize_string(restaurant_name),
            date=_text_or_default(raw.get("date"), ""),
            currency=_text_or_default(raw.get("currency"), DEFAULT_CURRENCY),
            items=_sanitize_items(raw_items),
            **totals,
        )
    except Exception as e:
        logger.info("Receipt rejected: %s", e)
        return None

    items_sum = receipt.items_sum()
    if abs(items_sum - receipt.total) > 0.01:
        logger.debug(
            "Receipt accepted with unreconciled total: items=%.2f total=%.2f", items_sum, receipt.total
        )
    return receipt
