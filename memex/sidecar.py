"""Mapping from token positions within a shard back to source content."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional

from memex.kvstore import Store
from memex.shard import ShardId


@dataclass(frozen=True)
class SourceRef:
    """A resolved reference from a token position back to source content."""

    content_id: str
    offset_within_source: int


class PositionMap:
    """Records which content produced which token ranges of a shard."""

    TREE_NAME = "position_map"

    def __init__(self, store: Store) -> None:
        self._tree = store.open_tree(self.TREE_NAME)

    @staticmethod
    def _key(shard: ShardId, offset: int) -> bytes:
        # Zero-padded so lexicographic order matches numeric order.
        return f"{shard.to_key()}:{offset:020d}".encode("utf-8")

    def record(self, shard: ShardId, offset: int, length: int, content_id: str) -> None:
        """Record that tokens ``offset..offset+length`` in ``shard`` came from ``content_id``."""
        entry = {"content_id": content_id, "offset": offset, "length": length}
        self._tree.insert(self._key(shard, offset), json.dumps(entry).encode("utf-8"))

    def resolve(self, shard: ShardId, offset: int) -> Optional[SourceRef]:
        """Resolve a token offset within a shard to its source content."""
        prefix = f"{shard.to_key()}:".encode("utf-8")
        for _, raw in reversed(self._tree.scan_prefix(prefix)):
            entry = json.loads(raw)
            start = int(entry["offset"])
            end = start + int(entry["length"])
            if start <= offset < end:
                return SourceRef(
                    content_id=entry["content_id"],
                    offset_within_source=offset - start,
                )
            if end <= offset:
                break
        return None