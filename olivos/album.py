"""
Album view-models: turn flat catalog rows plus a trainer's awards into the
nested event -> collection -> stamp structure the album pages render.

Everything here is pure. Callers load rows once (see `catalog.service.load_snapshot`)
and rebuild the nested view whenever an input changes.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

Row = Mapping[str, Any]
AwardKey = Tuple[str, str, str]


@dataclass(frozen=True)
class AlbumStamp:
    id: str
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    owned: bool = False
    claim_code: Optional[str] = None
    awarded_at: Optional[str] = None


@dataclass(frozen=True)
class AlbumCollection:
    id: str
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    stamps: Tuple[AlbumStamp, ...] = ()

    @property
    def has_children(self) -> bool:
        return bool(self.stamps)

    @property
    def owned_count(self) -> int:
        return sum(1 for stamp in self.stamps if stamp.owned)


@dataclass(frozen=True)
class AlbumEvent:
    id: str
    name: str
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    collections: Tuple[AlbumCollection, ...] = ()

    @property
    def has_children(self) -> bool:
        return bool(self.collections)


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable set of rows loaded after a mutation; links are indexed lazily."""

    events: Tuple[dict, ...] = ()
    collections: Tuple[dict, ...] = ()
    stamps: Tuple[dict, ...] = ()
    event_collections: Tuple[dict, ...] = ()
    collection_stamps: Tuple[dict, ...] = ()
    users: Tuple[dict, ...] = ()
    images: Tuple[Any, ...] = ()
    warnings: Tuple[str, ...] = field(default=())

    @cached_property
    def _collections_by_event(self) -> Dict[str, List[str]]:
        return _index_links(self.event_collections, "event_id", "collection_id")

    @cached_property
    def _events_by_collection(self) -> Dict[str, List[str]]:
        return _index_links(self.event_collections, "collection_id", "event_id")

    @cached_property
    def _stamps_by_collection(self) -> Dict[str, List[str]]:
        return _index_links(self.collection_stamps, "collection_id", "stamp_id")

    @cached_property
    def _collections_by_stamp(self) -> Dict[str, List[str]]:
        return _index_links(self.collection_stamps, "stamp_id", "collection_id")

    def collection_ids_for_event(self, event_id: str) -> List[str]:
        return list(self._collections_by_event.get(str(event_id), ()))

    def event_ids_for_collection(self, collection_id: str) -> List[str]:
        return list(self._events_by_collection.get(str(collection_id), ()))

    def stamp_ids_for_collection(self, collection_id: str) -> List[str]:
        return list(self._stamps_by_collection.get(str(collection_id), ()))

    def collection_ids_for_stamp(self, stamp_id: str) -> List[str]:
        return list(self._collections_by_stamp.get(str(stamp_id), ()))

    @property
    def event_ids_with_collections(self) -> set:
        return set(self._collections_by_event)

    @property
    def collection_ids_with_stamps(self) -> set:
        return set(self._stamps_by_collection)

    def find(self, kind: str, item_id: str) -> Optional[dict]:
        rows = {
            "event": self.events,
            "collection": self.collections,
            "stamp": self.stamps,
            "user": self.users,
        }.get(kind, ())
        for row in rows:
            if str(row.get("id")) == str(item_id):
                return row
        return None

    def names(self, kind: str, ids: Iterable[str]) -> List[str]:
        names = []
        for item_id in ids:
            row = self.find(kind, item_id)
            if row:
                names.append(row.get("name") or "")
        return names


def build_album(
    events: Sequence[Row],
    collections: Sequence[Row],
    stamps: Sequence[Row],
    event_collection_links: Sequence[Row],
    collection_stamp_links: Sequence[Row],
    awards: Sequence[Row] = (),
    personal: bool = True,
) -> List[AlbumEvent]:
    """
    Build the nested album.

    personal=True (a trainer's own album): an event lists the collections the
    trainer holds at least one award under for that event, each collection lists
    its stamps through the collection/stamp links, and empty collections and
    events are dropped.

    personal=False (admin album tab): every event with every linked collection
    and stamp is kept; `has_children` tells the template to flag empty ones.

    Input order is preserved for events, collections and stamps.
    """
    collections_by_id = {str(row["id"]): row for row in collections}
    stamps_by_id = {str(row["id"]): row for row in stamps}
    collection_rank = {key: index for index, key in enumerate(collections_by_id)}
    stamp_rank = {key: index for index, key in enumerate(stamps_by_id)}

    stamp_ids_by_collection = _index_links(collection_stamp_links, "collection_id", "stamp_id")
    awarded = _index_awards(awards)

    if personal:
        collection_ids_by_event: Dict[str, List[str]] = defaultdict(list)
        for event_id, collection_id, _ in awarded:
            if collection_id not in collection_ids_by_event[event_id]:
                collection_ids_by_event[event_id].append(collection_id)
    else:
        collection_ids_by_event = _index_links(event_collection_links, "event_id", "collection_id")

    album: List[AlbumEvent] = []
    for event in events:
        event_id = str(event["id"])
        linked = [cid for cid in collection_ids_by_event.get(event_id, ()) if cid in collections_by_id]
        linked.sort(key=collection_rank.__getitem__)

        album_collections = []
        for collection_id in linked:
            stamp_ids = [sid for sid in stamp_ids_by_collection.get(collection_id, ()) if sid in stamps_by_id]
            stamp_ids.sort(key=stamp_rank.__getitem__)
            album_stamps = tuple(
                _album_stamp(stamps_by_id[sid], awarded.get((event_id, collection_id, sid)))
                for sid in stamp_ids
            )
            if personal and not album_stamps:
                continue
            collection = collections_by_id[collection_id]
            album_collections.append(
                AlbumCollection(
                    id=collection_id,
                    name=collection.get("name") or "",
                    description=collection.get("description"),
                    image_url=collection.get("image_url"),
                    stamps=album_stamps,
                )
            )

        if personal and not album_collections:
            continue
        album.append(
            AlbumEvent(
                id=event_id,
                name=event.get("name") or "",
                starts_at=event.get("starts_at"),
                ends_at=event.get("ends_at"),
                description=event.get("description"),
                image_url=event.get("image_url"),
                collections=tuple(album_collections),
            )
        )
    return album


def count_owned(album: Iterable[AlbumEvent]) -> Tuple[int, int]:
    owned = total = 0
    for event in album:
        for collection in event.collections:
            total += len(collection.stamps)
            owned += collection.owned_count
    return owned, total


def summarize_progress(album: Iterable[AlbumEvent]) -> dict:
    owned, total = count_owned(album)
    percent = int((owned / total) * 100) if total else 0
    return {"owned": owned, "total": total, "percent": percent}


def _album_stamp(stamp: Row, award: Optional[Row]) -> AlbumStamp:
    return AlbumStamp(
        id=str(stamp["id"]),
        name=stamp.get("name") or "",
        description=stamp.get("description"),
        image_url=stamp.get("image_url"),
        owned=award is not None,
        claim_code=award.get("claim_code") if award else None,
        awarded_at=award.get("awarded_at") if award else None,
    )


def _index_links(links: Iterable[Row], key: str, value: str) -> Dict[str, List[str]]:
    index: Dict[str, List[str]] = defaultdict(list)
    seen = set()
    for link in links:
        left, right = link.get(key), link.get(value)
        if left is None or right is None:
            continue
        pair = (str(left), str(right))
        if pair in seen:
            continue
        seen.add(pair)
        index[pair[0]].append(pair[1])
    return dict(index)


def _index_awards(awards: Iterable[Row]) -> Dict[AwardKey, Row]:
    index: Dict[AwardKey, Row] = {}
    for award in awards:
        try:
            key = (str(award["event_id"]), str(award["collection_id"]), str(award["stamp_id"]))
        except KeyError:
            continue
        index.setdefault(key, award)
    return index
