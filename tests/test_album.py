import pytest

from olivos.album import CatalogSnapshot, build_album, summarize_progress

EVENTS = [
    {"id": "e1", "name": "Fall Fest", "starts_at": "2025-10-01"},
    {"id": "e2", "name": "Winter Cup", "starts_at": "2025-12-20"},
]
COLLECTIONS = [
    {"id": "c1", "name": "Ghost Week"},
    {"id": "c2", "name": "Ice Types"},
    {"id": "c3", "name": "Empty"},
]
STAMPS = [
    {"id": "s1", "name": "Gengar"},
    {"id": "s2", "name": "Mimikyu"},
    {"id": "s3", "name": "Lapras"},
]
EVENT_COLLECTIONS = [
    {"event_id": "e1", "collection_id": "c1"},
    {"event_id": "e1", "collection_id": "c3"},
    {"event_id": "e2", "collection_id": "c2"},
]
COLLECTION_STAMPS = [
    {"collection_id": "c1", "stamp_id": "s2"},
    {"collection_id": "c1", "stamp_id": "s1"},
    {"collection_id": "c2", "stamp_id": "s3"},
]


def _album(awards=(), personal=True):
    return build_album(EVENTS, COLLECTIONS, STAMPS, EVENT_COLLECTIONS, COLLECTION_STAMPS, awards, personal)


def test_admin_album_keeps_everything_in_input_order():
    album = _album(personal=False)
    assert [event.id for event in album] == ["e1", "e2"]
    fall = album[0]
    assert [collection.id for collection in fall.collections] == ["c1", "c3"]
    # Stamp order follows the stamp rows, not the link rows.
    assert [stamp.id for stamp in fall.collections[0].stamps] == ["s1", "s2"]
    assert fall.collections[1].has_children is False
    assert fall.has_children is True


def test_personal_album_only_lists_collections_with_awards():
    awards = [
        {"event_id": "e1", "collection_id": "c1", "stamp_id": "s1", "claim_code": "abc", "awarded_at": "2025-10-02T10:00:00+00:00"},
    ]
    album = _album(awards)
    assert [event.id for event in album] == ["e1"]
    ghost_week = album[0].collections[0]
    assert [(stamp.id, stamp.owned) for stamp in ghost_week.stamps] == [("s1", True), ("s2", False)]
    assert ghost_week.stamps[0].claim_code == "abc"
    assert ghost_week.owned_count == 1


def test_personal_album_empty_without_awards():
    assert _album() == []
    assert summarize_progress([]) == {"owned": 0, "total": 0, "percent": 0}


def test_progress_counts_owned_stamps():
    awards = [{"event_id": "e1", "collection_id": "c1", "stamp_id": "s2", "claim_code": "x"}]
    assert summarize_progress(_album(awards)) == {"owned": 1, "total": 2, "percent": 50}


def test_snapshot_indexes_links_and_is_frozen():
    snapshot = CatalogSnapshot(
        events=tuple(EVENTS),
        collections=tuple(COLLECTIONS),
        stamps=tuple(STAMPS),
        event_collections=tuple(EVENT_COLLECTIONS + [{"event_id": "e1", "collection_id": "c1"}]),
        collection_stamps=tuple(COLLECTION_STAMPS),
    )
    assert snapshot.collection_ids_for_event("e1") == ["c1", "c3"]
    assert snapshot.event_ids_for_collection("c2") == ["e2"]
    assert snapshot.collection_ids_for_stamp("s1") == ["c1"]
    assert snapshot.event_ids_with_collections == {"e1", "e2"}
    assert snapshot.collection_ids_with_stamps == {"c1", "c2"}
    assert snapshot.names("stamp", ["s3", "missing"]) == ["Lapras"]
    assert snapshot.find("event", "e2")["name"] == "Winter Cup"
    with pytest.raises(AttributeError):
        snapshot.events = ()
