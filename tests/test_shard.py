from datetime import datetime, timezone

import pytest

from memex.shard import ShardId, ShardMeta, ShardState


def test_parse_valid_key():
    shard = ShardId.parse("bhs.corpus.all")
    assert shard == ShardId("bhs", "corpus", "all")


@pytest.mark.parametrize("key", ["bhs.corpus", "bhs", ""])
def test_parse_invalid_key(key):
    assert ShardId.parse(key) is None


def test_parse_keeps_extra_dots_in_entity():
    shard = ShardId.parse("bhs.corpus.a.b")
    assert shard.namespace == "bhs"
    assert shard.category == "corpus"
    assert shard.entity_id == "a.b"


def test_to_key_round_trips_through_parse():
    shard = ShardId("bhs", "corpus", "all")
    assert ShardId.parse(shard.to_key()) == shard
    assert str(shard) == shard.to_key()


def test_shard_id_hashable_and_equal():
    first = ShardId("bhs", "corpus", "all")
    second = ShardId.parse("bhs.corpus.all")
    assert {first, second} == {first}


def test_shard_id_dict_round_trip():
    shard = ShardId("bhs", "corpus", "all")
    assert ShardId.from_dict(shard.to_dict()) == shard


def test_shard_id_from_dict_missing_field():
    with pytest.raises(ValueError):
        ShardId.from_dict({"namespace": "bhs"})


def test_shard_meta_round_trip():
    meta = ShardMeta(
        id=ShardId("bhs", "corpus", "all"),
        state=ShardState.RESIDENT,
        created_at=datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
        token_count=4096,
        byte_size=0,
        pinned=True,
    )
    assert ShardMeta.from_dict(meta.to_dict()) == meta


def test_shard_meta_state_serialized_by_name():
    meta = ShardMeta(
        id=ShardId("bhs", "corpus", "all"),
        state=ShardState.COLD,
        created_at=datetime.now(timezone.utc),
    )
    assert meta.to_dict()["state"] == "Cold"


def test_shard_meta_parses_nanosecond_timestamp():
    data = {
        "id": {"namespace": "bhs", "category": "corpus", "entity_id": "all"},
        "state": "Pinned",
        "created_at": "2024-05-01T12:30:00.123456789Z",
        "token_count": 0,
        "byte_size": 0,
        "pinned": True,
    }
    meta = ShardMeta.from_dict(data)
    assert meta.state is ShardState.PINNED
    assert meta.created_at.tzinfo is not None
    assert meta.created_at.year == 2024


def test_shard_meta_rejects_unknown_state():
    data = {
        "id": {"namespace": "bhs", "category": "corpus", "entity_id": "all"},
        "state": "Bogus",
        "created_at": "2024-05-01T12:30:00Z",
        "token_count": 0,
        "byte_size": 0,
        "pinned": False,
    }
    with pytest.raises(ValueError):
        ShardMeta.from_dict(data)