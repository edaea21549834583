from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

SUPPORTED_LANGUAGES: Dict[str, str] = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "zh": "Chinese",
    "ja": "Japanese",
}


class ErrorKind(str, Enum):
    STRUCTURALLY_INVALID = "structurally_invalid"
    LINK_INVALID = "link_invalid"
    UPSTREAM_ANALYSIS_FAILURE = "upstream_analysis_failure"

    @property
    def message(self) -> str:
        return ERROR_MESSAGES[self]


ERROR_MESSAGES = {
    ErrorKind.STRUCTURALLY_INVALID: "Received malformed data from AI analysis.",
    ErrorKind.LINK_INVALID: "The shared link is invalid or has been tampered with.",
    ErrorKind.UPSTREAM_ANALYSIS_FAILURE: "Failed to analyze receipt. Please ensure the photo is clear.",
}


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReceiptItem(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    quantity: float = Field(default=1, ge=0)
    description: str = Field(max_length=255)
    price: float = Field(default=0, ge=0)
    original_description: Optional[str] = None


class Receipt(CamelModel):
    """Trusted receipt. Only built by receipt_integrity.validate_receipt."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    restaurant_name: str
    date: str = ""
    currency: str = "$"
    items: List[ReceiptItem] = Field(default_factory=list)
    subtotal: float = Field(default=0, ge=0)
    tax: float = Field(default=0, ge=0)
    tip: float = Field(default=0, ge=0)
    total: float = Field(default=0, ge=0)

    def find_item(self, item_id: str) -> Optional[ReceiptItem]:
        return next((item for item in self.items if item.id == item_id), None)

    def items_sum(self) -> float:
        return sum(item.price for item in self.items)


class Selection(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    item_id: str
    is_selected: bool = False
    split_count: int = 1

    @field_validator("split_count", mode="before")
    @classmethod
    def clamp_split_count(cls, value: Any) -> int:
        try:
            count = int(value)
        except (TypeError, ValueError, OverflowError):
            return 1
        return max(1, count)


class Allocation(CamelModel):
    subtotal: float = 0.0
    tax: float = 0.0
    tip: float = 0.0
    total: float = 0.0
    ratio: float = 0.0


class AllocationLine(CamelModel):
    item_id: str
    description: str
    price: float
    split_count: int
    share: float
