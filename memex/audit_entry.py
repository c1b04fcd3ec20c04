"""Entries and actions of the hash-chained audit trail."""

from __future__ import annotations

import re
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, ClassVar

_FRACTION_RE = re.compile(r"^(.*T\d{2}:\d{2}:\d{2}\.\d{6})\d+(.*)$")
HASH_LEN = 32


def format_timestamp(value: datetime) -> str:
    """RFC 3339 in UTC with a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(text: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware UTC datetime."""
    normalized = text.strip()
    if normalized.endswith(("Z", "z")):
        normalized = normalized[:-1] + "+00:00"
    match = _FRACTION_RE.match(normalized)
    if match:
        normalized = match.group(1) + match.group(2)
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


_ACTIONS: dict[str, type["AuditAction"]] = {}


class AuditAction:
    """An auditable action; serialized as ``{"<Kind>": {fields...}}``."""

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        _ACTIONS[cls.__name__] = cls

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, dict[str, Any]]:
        body = {}
        for item in fields(self):  # type: ignore[arg-type]
            value = getattr(self, item.name)
            body[item.name] = list(value) if isinstance(value, tuple) else value
        return {self.kind: body}

    @staticmethod
    def from_dict(data: Any) -> "AuditAction":
        if not isinstance(data, dict) or len(data) != 1:
            raise ValueError("audit action must be an object with exactly one key")
        ((name, body),) = data.items()
        action_cls = _ACTIONS.get(name)
        if action_cls is None:
            raise ValueError(f"unknown audit action: {name!r}")
        if not isinstance(body, dict):
            raise ValueError(f"invalid body for audit action {name}")
        try:
            kwargs = {item.name: body[item.name] for item in fields(action_cls)}
            return action_cls(**kwargs)
        except (KeyError, TypeError) as exc:
            raise ValueError(f"invalid audit action {name}: {exc}") from exc


@dataclass(frozen=True)
class Ingest(AuditAction):
    shard: str
    content_id: str


@dataclass(frozen=True)
class Retrieve(AuditAction):
    shards: tuple[str, ...]
    query_hash: str
    hit_count: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "shards", tuple(self.shards))
        object.__setattr__(self, "hit_count", int(self.hit_count))


@dataclass(frozen=True)
class ShardCreate(AuditAction):
    shard: str


@dataclass(frozen=True)
class ShardEvict(AuditAction):
    shard: str


@dataclass(frozen=True)
class ConsentGrant(AuditAction):
    entity: str


@dataclass(frozen=True)
class ConsentRevoke(AuditAction):
    entity: str


def _hash_bytes(value: Any, name: str) -> bytes:
    try:
        raw = bytes(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid {name}: {exc}") from exc
    if len(raw) != HASH_LEN:
        raise ValueError(f"{name} must be {HASH_LEN} bytes, got {len(raw)}")
    return raw


@dataclass
class AuditEntry:
    """One link of the audit chain."""

    seq: int
    timestamp: datetime
    action: AuditAction
    actor: str
    namespace: str
    detail: Any
    prev_hash: bytes
    hash: bytes

    ZERO_HASH: ClassVar[bytes] = bytes(HASH_LEN)

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "timestamp": format_timestamp(self.timestamp),
            "action": self.action.to_dict(),
            "actor": self.actor,
            "namespace": self.namespace,
            "detail": self.detail,
            "prev_hash": list(self.prev_hash),
            "hash": list(self.hash),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditEntry":
        try:
            return cls(
                seq=int(data["seq"]),
                timestamp=parse_timestamp(data["timestamp"]),
                action=AuditAction.from_dict(data["action"]),
                actor=str(data["actor"]),
                namespace=str(data["namespace"]),
                detail=data.get("detail"),
                prev_hash=_hash_bytes(data["prev_hash"], "prev_hash"),
                hash=_hash_bytes(data["hash"], "hash"),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"invalid audit entry: {exc}") from exc