"""Etsy listing fields: submission model and normalization to Etsy limits."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from ..errors import ValidationError

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 140
MAX_TAGS = 13
MAX_TAG_LENGTH = 20
DEFAULT_QUANTITY = 999
MAX_PRICE = Decimal("50000.00")

RENEWAL_OPTIONS = ("automatic", "manual")


def split_tags(value: Any) -> List[str]:
    """Split a comma-joined string (or a list) into clean, non-empty tags."""

    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        raw = [str(v) for v in value]
    else:
        raw = str(value).split(",")
    return [tag.strip() for tag in raw if tag and tag.strip()]


def normalize_price(value: Any) -> str:
    """Return ``value`` as a positive two-decimal string (``"29.99"``).

    Raises:
        ValueError: If the value is not a positive number up to MAX_PRICE.
    """

    text = str(value).strip().lstrip("$").replace(",", "").strip()
    try:
        amount = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"not a number: {value!r}") from exc
    if not amount.is_finite() or amount <= 0:
        raise ValueError(f"price must be positive: {value!r}")
    if amount > MAX_PRICE:
        raise ValueError(f"price exceeds {MAX_PRICE}: {value!r}")
    try:
        return str(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
    except InvalidOperation as exc:
        raise ValueError(f"not a valid price: {value!r}") from exc


def etsy_tags(value: Any) -> List[str]:
    """Tags trimmed to Etsy limits (13 tags, 20 chars each)."""

    tags = split_tags(value)
    if len(tags) > MAX_TAGS:
        logger.warning(f"Too many tags ({len(tags)}), truncating to {MAX_TAGS}")
        tags = tags[:MAX_TAGS]
    return [tag[:MAX_TAG_LENGTH].strip() for tag in tags]


@dataclass
class ListingSubmission:
    """Edited listing fields submitted from the review form."""

    title: str
    description: str
    tags: str
    price: str
    quantity: int = DEFAULT_QUANTITY
    shop_section_id: Optional[int] = None
    renewal_option: str = "automatic"

    @classmethod
    def from_payload(cls, payload: Any) -> "ListingSubmission":
        """Validate a create-listing JSON body.

        Accepts both ``shopSectionId``/``renewalOption`` (form names) and
        their snake_case equivalents.

        Raises:
            ValidationError: If required fields are missing or malformed.
        """

        if not isinstance(payload, dict):
            raise ValidationError("Listing body must be a JSON object")

        title = str(payload.get("title") or "").strip()
        description = str(payload.get("description") or "").strip()
        if not title or not description:
            raise ValidationError("Listing title and description are required")

        try:
            price = normalize_price(payload.get("price"))
        except ValueError as exc:
            raise ValidationError("Invalid listing price", details=str(exc)) from exc

        raw_quantity = payload.get("quantity")
        try:
            quantity = int(raw_quantity) if raw_quantity not in (None, "") else DEFAULT_QUANTITY
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid listing quantity", details=str(raw_quantity)) from exc
        if quantity < 1:
            raise ValidationError("Listing quantity must be at least 1")

        raw_section = payload.get("shopSectionId", payload.get("shop_section_id"))
        try:
            section_id = int(raw_section) if raw_section not in (None, "") else None
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid shop section id", details=str(raw_section)) from exc

        renewal = str(payload.get("renewalOption") or payload.get("renewal_option") or "automatic").lower()
        if renewal not in RENEWAL_OPTIONS:
            raise ValidationError(f"renewalOption must be one of {', '.join(RENEWAL_OPTIONS)}")

        return cls(
            title=title,
            description=description,
            tags=", ".join(split_tags(payload.get("tags"))),
            price=price,
            quantity=quantity,
            shop_section_id=section_id,
            renewal_option=renewal,
        )

    def to_etsy_fields(self) -> Dict[str, Any]:
        """Fields of the createDraftListing body derived from the submission."""

        fields: Dict[str, Any] = {
            "quantity": self.quantity,
            "title": self.title[:MAX_TITLE_LENGTH],
            "description": self.description,
            "price": float(self.price),
            "tags": etsy_tags(self.tags),
            "should_auto_renew": self.renewal_option == "automatic",
        }
        if self.shop_section_id is not None:
            fields["shop_section_id"] = self.shop_section_id
        return fields


__all__ = [
    "ListingSubmission",
    "split_tags",
    "normalize_price",
    "etsy_tags",
    "MAX_TAGS",
    "MAX_TAG_LENGTH",
    "MAX_TITLE_LENGTH",
    "MAX_PRICE",
]
