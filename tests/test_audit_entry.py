from datetime import datetime, timezone

import pytest

from memex.audit_entry import (
    AuditAction,
    AuditEntry,
    ConsentGrant,
    ConsentRevoke,
    Ingest,
    Retrieve,
    ShardCreate,
    ShardEvict,
)

ACTIONS = [
    Ingest(shard="bhs.corpus.all", content_id="history/cash.md"),
    Retrieve(shards=["bhs.corpus.all"], query_hash="abc", hit_count=3),
    ShardCreate(shard="bhs.corpus.all"),
    ShardEvict(shard="bhs.corpus.all"),
    ConsentGrant(entity="bhs-ingest"),
    ConsentRevoke(entity="bhs-ingest"),
]


def test_ingest_is_externally_tagged():
    action = Ingest(shard="bhs.corpus.all", content_id="doc")
    assert action.to_dict() == {
        "Ingest": {"shard": "bhs.corpus.all", "content_id": "doc"}
    }


def test_retrieve_shards_serialize_as_list():
    action = Retrieve(shards=("a.b.c", "a.b.d"), query_hash="h", hit_count=2)
    assert action.to_dict()["Retrieve"]["shards"] == ["a.b.c", "a.b.d"]


@pytest.mark.parametrize("action", ACTIONS)
def test_action_round_trip(action):
    restored = AuditAction.from_dict(action.to_dict())
    assert restored == action
    assert restored.kind == type(action).__name__


@pytest.mark.parametrize(
    "data",
    [
        {"Unknown": {}},
        {"Ingest": {"shard": "s"}},
        {"Ingest": {"shard": "s", "content_id": "c"}, "ShardCreate": {"shard": "s"}},
        {"ShardCreate": "s"},
        "Ingest",
    ],
)
def test_invalid_action_raises(data):
    with pytest.raises(ValueError):
        AuditAction.from_dict(data)


def make_entry():
    return AuditEntry(
        seq=4,
        timestamp=datetime(2024, 5, 1, 12, 30, 15, 123456, tzinfo=timezone.utc),
        action=ShardCreate(shard="bhs.corpus.all"),
        actor="system",
        namespace="bhs",
        detail={"token_count": 12},
        prev_hash=bytes(range(32)),
        hash=bytes(reversed(range(32))),
    )


def test_entry_round_trip():
    entry = make_entry()
    data = entry.to_dict()
    assert data["prev_hash"] == list(range(32))
    assert data["timestamp"].endswith("Z")
    assert AuditEntry.from_dict(data) == entry


def test_entry_with_wrong_hash_length_raises():
    data = make_entry().to_dict()
    data["hash"] = [0, 1, 2]
    with pytest.raises(ValueError):
        AuditEntry.from_dict(data)


def test_entry_missing_field_raises():
    data = make_entry().to_dict()
    del data["actor"]
    with pytest.raises(ValueError):
        AuditEntry.from_dict(data)