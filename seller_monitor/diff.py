"""Incremental diff between a crawl and the known-item set."""

from __future__ import annotations

from typing import AbstractSet, Iterable, List, Set, Tuple

from .models import Item


def diff_items(
    known_ids: AbstractSet[str], items: Iterable[Item]
) -> Tuple[List[Item], Set[str]]:
    """
    Split a crawl into the items not notified yet.
    - known_ids: ids already notified for this seller and kind
    - items: crawled items, in crawl order
    Returns:
      (new_items in crawl order, known_ids | ids of new_items)
    The input set is never mutated. An id seen twice in one crawl is
    reported once.
    """
    updated: Set[str] = set(known_ids)
    new_items: List[Item] = []

    for it in items:
        if it.item_id in updated:
            continue
        new_items.append(it)
        updated.add(it.item_id)

    return new_items, updated


__all__ = ["diff_items"]
