"""Hash-chained, persistent audit log."""

from __future__ import annotations

import asyncio
import hashlib
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from memex.audit_entry import HASH_LEN, AuditAction, AuditEntry
from memex.audit_filter import AuditFilter
from memex.kvstore import Store

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
DEFAULT_QUERY_LIMIT = 100


def _timestamp_micros(timestamp: datetime) -> int:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return (timestamp - _EPOCH) // timedelta(microseconds=1)


def _action_bytes(action: AuditAction) -> bytes:
    return json.dumps(
        action.to_dict(), separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def compute_entry_hash(
    prev_hash: bytes,
    seq: int,
    timestamp: datetime,
    action: AuditAction,
    actor: str,
    namespace: str,
) -> bytes:
    """SHA-256 over the previous hash, sequence, time, action, actor and namespace."""
    digest = hashlib.sha256()
    digest.update(bytes(prev_hash))
    digest.update(seq.to_bytes(8, "little"))
    digest.update(_timestamp_micros(timestamp).to_bytes(8, "little", signed=True))
    digest.update(_action_bytes(action))
    digest.update(actor.encode("utf-8"))
    digest.update(namespace.encode("utf-8"))
    return digest.digest()


def _seq_key(seq: int) -> bytes:
    return seq.to_bytes(8, "big")


class AuditLog:
    """Append-only audit trail where every entry hashes its predecessor."""

    TREE_NAME = "audit_log"

    def __init__(self, store: Store) -> None:
        self._tree = store.open_tree(self.TREE_NAME)
        self._append_lock = asyncio.Lock()

    @staticmethod
    def _decode(raw: bytes) -> AuditEntry:
        return AuditEntry.from_dict(json.loads(raw))

    async def append(
        self,
        action: AuditAction,
        actor: str,
        namespace: str,
        detail: Optional[Any] = None,
    ) -> AuditEntry:
        """Append an entry linked to the current last entry."""
        async with self._append_lock:
            last = self._tree.last()
            if last is None:
                seq, prev_hash = 0, bytes(HASH_LEN)
            else:
                previous = self._decode(last[1])
                seq, prev_hash = previous.seq + 1, previous.hash

            timestamp = datetime.now(timezone.utc)
            entry = AuditEntry(
                seq=seq,
                timestamp=timestamp,
                action=action,
                actor=actor,
                namespace=namespace,
                detail=detail,
                prev_hash=prev_hash,
                hash=compute_entry_hash(
                    prev_hash, seq, timestamp, action, actor, namespace
                ),
            )
            self._tree.insert(
                _seq_key(seq), json.dumps(entry.to_dict()).encode("utf-8")
            )
            return entry

    async def query(self, audit_filter: Optional[AuditFilter] = None) -> list[AuditEntry]:
        """Matching entries in sequence order, after ``offset``, at most ``limit``."""
        audit_filter = audit_filter or AuditFilter()
        offset = audit_filter.offset or 0
        limit = (
            DEFAULT_QUERY_LIMIT if audit_filter.limit is None else audit_filter.limit
        )
        results: list[AuditEntry] = []
        skipped = 0
        for _, raw in self._tree.iter():
            entry = self._decode(raw)
            if not audit_filter.matches(entry):
                continue
            if skipped < offset:
                skipped += 1
                continue
            results.append(entry)
            if len(results) >= limit:
                break
        return results

    async def verify_chain(self, from_seq: int, to_seq: int) -> bool:
        """True if entries ``from_seq..=to_seq`` exist, link up and hash correctly."""
        expected_prev: Optional[bytes] = None
        for seq in range(from_seq, to_seq + 1):
            raw = self._tree.get(_seq_key(seq))
            if raw is None:
                return False
            entry = self._decode(raw)
            if expected_prev is not None and entry.prev_hash != expected_prev:
                return False
            computed = compute_entry_hash(
                entry.prev_hash,
                entry.seq,
                entry.timestamp,
                entry.action,
                entry.actor,
                entry.namespace,
            )
            if computed != entry.hash:
                return False
            expected_prev = entry.hash
        return True