"""Data types shared across the monitor."""

from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Set


class MonitorKind(str, Enum):
    """What is being watched on a storefront. Values match the admin API's `type`."""

    LISTINGS = "listings"
    SALES = "sold"

    @classmethod
    def parse(cls, value: object) -> "MonitorKind":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for kind in cls:
            if kind.value == text:
                return kind
        raise ValueError(f"type must be 'listings' or 'sold', got {value!r}")


@dataclass
class TrackedSeller:
    """One storefront watched for one kind of change.

    `known_item_ids` only ever grows; `notify_failures` counts the cycles in
    which an item's notification failed, keyed by item id.
    """

    store_identifier: str
    seller_handle: str
    kind: MonitorKind
    known_item_ids: Set[str] = field(default_factory=set)
    last_checked_at: Optional[_dt.datetime] = None
    added_at: _dt.datetime = field(
        default_factory=lambda: _dt.datetime.now(_dt.timezone.utc)
    )
    notify_failures: Dict[str, int] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, MonitorKind]:
        return (self.seller_handle, self.kind)

    def to_dict(self) -> dict:
        """Public view used by the admin API (ids are omitted, only counted)."""
        return {
            "storeName": self.store_identifier,
            "ssn": self.seller_handle,
            "type": self.kind.value,
            "knownItems": len(self.known_item_ids),
            "lastChecked": self.last_checked_at.isoformat() if self.last_checked_at else None,
            "addedAt": self.added_at.isoformat() if self.added_at else None,
        }


@dataclass
class RawItem:
    """A result card as read off a search page, before validation."""

    title: str = ""
    link: str = ""
    price: str = ""
    image_url: Optional[str] = None
    date_text: Optional[str] = None
    new_listing: bool = False


@dataclass
class Item:
    """A validated listing or sale. Only `item_id` is used for identity."""

    item_id: str
    title: str
    price: str
    link: str
    seller_handle: str = ""
    store_identifier: str = ""
    image_url: Optional[str] = None
    listed_at: Optional[str] = None
    sold_at: Optional[str] = None

    def to_dict(self) -> dict:
        out = {
            "itemId": self.item_id,
            "title": self.title,
            "link": self.link,
            "price": self.price,
            "sellerUsername": self.seller_handle,
            "storeName": self.store_identifier,
            "imageUrl": self.image_url,
        }
        if self.sold_at is not None:
            out["soldDate"] = self.sold_at
        else:
            out["listedDate"] = self.listed_at
        return out


__all__ = ["MonitorKind", "TrackedSeller", "RawItem", "Item"]
