"""Links invoice lines to purchase-order items and PO items to receipt items.

The description matcher tries, in order: exact case-insensitive description,
substring containment in either direction, then overlap on significant words
(longer than 3 characters). First hit wins. Word lookups go through an index
built once per match run.
"""
import re
import uuid
from typing import Any, Iterable, Protocol

_WORD_SPLIT = re.compile(r"\W+")
MIN_SIGNIFICANT_WORD_LENGTH = 4


class LineMatcher(Protocol):
    """Strategy that picks the PO item an invoice line refers to."""

    def find_po_item(self, description: str) -> Any | None:
        ...


def _normalize(text: str | None) -> str:
    return (text or "").strip().lower()


def significant_words(text: str | None) -> list[str]:
    words = []
    for word in _WORD_SPLIT.split(_normalize(text)):
        if len(word) >= MIN_SIGNIFICANT_WORD_LENGTH and word not in words:
            words.append(word)
    return words


class DescriptionLineMatcher:
    def __init__(self, po_items: Iterable[Any]):
        self._items = list(po_items)
        self._normalized = [_normalize(item.description) for item in self._items]

        self._exact: dict[str, int] = {}
        self._word_index: dict[str, list[int]] = {}
        for position, description in enumerate(self._normalized):
            self._exact.setdefault(description, position)
            for word in significant_words(description):
                self._word_index.setdefault(word, []).append(position)

    def find_po_item(self, description: str) -> Any | None:
        needle = _normalize(description)
        if not needle:
            return None

        position = self._exact.get(needle)
        if position is not None:
            return self._items[position]

        for position, candidate in enumerate(self._normalized):
            if candidate and (needle in candidate or candidate in needle):
                return self._items[position]

        hits = [
            self._word_index[word][0]
            for word in significant_words(needle)
            if word in self._word_index
        ]
        if hits:
            return self._items[min(hits)]
        return None


def index_receipt_items(gr_items: Iterable[Any]) -> dict[uuid.UUID, Any]:
    """Map PO item id -> receipt item. The first receipt line for a PO item wins."""
    index: dict[uuid.UUID, Any] = {}
    for item in gr_items:
        if item.po_line_item_id is not None:
            index.setdefault(item.po_line_item_id, item)
    return index
