"""Free-text filtering for the admin tabs plus the shared paging helpers."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, TypeVar

MIN_SEARCH_LENGTH = 3
PAGE_SIZE = 20

T = TypeVar("T")


def normalize_query(text: Optional[str]) -> str:
    """Lowercase the trimmed query, or return "" when it is too short to filter on."""
    cleaned = (text or "").strip()
    if len(cleaned) < MIN_SEARCH_LENGTH:
        return ""
    return cleaned.lower()


def filter_items(items: Iterable[T], query: Optional[str], haystack: Callable[[T], Iterable[Any]]) -> List[T]:
    needle = normalize_query(query)
    if not needle:
        return list(items)
    return [item for item in items if needle in _join(haystack(item))]


def _join(parts: Iterable[Any]) -> str:
    return " ".join(str(part) for part in parts if part not in (None, "")).lower()


def event_haystack(event: Mapping[str, Any]) -> list:
    return [event.get("name"), event.get("description"), event.get("starts_at"), event.get("ends_at")]


def collection_haystack(collection: Mapping[str, Any], event_names: Sequence[str] = ()) -> list:
    return [collection.get("name"), collection.get("description"), *event_names]


def stamp_haystack(stamp: Mapping[str, Any], collection_names: Sequence[str] = ()) -> list:
    return [stamp.get("name"), stamp.get("description"), *collection_names]


def image_haystack(image) -> list:
    return [image.label, image.folder, image.path]


def user_status_label(active: bool) -> str:
    return "active" if active else "pending"


def user_haystack(user: Mapping[str, Any]) -> list:
    return [
        user.get("trainer_name"),
        user.get("trainer_code"),
        user.get("role"),
        user_status_label(bool(user.get("active"))),
    ]


def album_haystack(album_event) -> list:
    parts = [album_event.name, album_event.description]
    for collection in album_event.collections:
        parts.append(collection.name)
        parts.extend(stamp.name for stamp in collection.stamps)
    return parts


@dataclass(frozen=True)
class Page:
    items: list = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = PAGE_SIZE

    @property
    def pages(self) -> int:
        return max(1, math.ceil(self.total / self.page_size))

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.pages


def coerce_page(raw: Any) -> int:
    try:
        return max(1, int(raw))
    except (TypeError, ValueError):
        return 1


def page_bounds(page: int, page_size: int = PAGE_SIZE) -> tuple[int, int]:
    """Inclusive (from, to) row offsets, the way PostgREST `range()` expects them."""
    start = (coerce_page(page) - 1) * page_size
    return start, start + page_size - 1
