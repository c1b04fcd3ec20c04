"""Shard identifiers, residency states and shard metadata."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

_FRACTION_RE = re.compile(r"^(.*T\d{2}:\d{2}:\d{2}\.\d{6})\d+(.*)$")


def _format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_timestamp(text: str) -> datetime:
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


@dataclass(frozen=True)
class ShardId:
    """A shard identifier of the form ``namespace.category.entity_id``."""

    namespace: str
    category: str
    entity_id: str

    @classmethod
    def parse(cls, key: str) -> Optional["ShardId"]:
        """Parse a dotted key; return None if it has fewer than three parts."""
        parts = key.split(".", 2)
        if len(parts) < 3:
            return None
        namespace, category, entity_id = parts
        return cls(namespace, category, entity_id)

    def to_key(self) -> str:
        return f"{self.namespace}.{self.category}.{self.entity_id}"

    def __str__(self) -> str:
        return self.to_key()

    def to_dict(self) -> dict[str, str]:
        return {
            "namespace": self.namespace,
            "category": self.category,
            "entity_id": self.entity_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShardId":
        try:
            return cls(
                namespace=str(data["namespace"]),
                category=str(data["category"]),
                entity_id=str(data["entity_id"]),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"invalid shard id: {exc}") from exc


class ShardState(str, Enum):
    """Whether a shard is resident on the GPU or only in cold storage."""

    PINNED = "Pinned"
    RESIDENT = "Resident"
    COLD = "Cold"


@dataclass
class ShardMeta:
    """Metadata about a shard."""

    id: ShardId
    state: ShardState
    created_at: datetime
    token_count: int = 0
    byte_size: int = 0
    pinned: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id.to_dict(),
            "state": self.state.value,
            "created_at": _format_timestamp(self.created_at),
            "token_count": self.token_count,
            "byte_size": self.byte_size,
            "pinned": self.pinned,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShardMeta":
        try:
            return cls(
                id=ShardId.from_dict(data["id"]),
                state=ShardState(data["state"]),
                created_at=_parse_timestamp(data["created_at"]),
                token_count=int(data["token_count"]),
                byte_size=int(data["byte_size"]),
                pinned=bool(data["pinned"]),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"invalid shard metadata: {exc}") from exc