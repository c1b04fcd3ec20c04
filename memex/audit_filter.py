"""Filter criteria for querying the audit log."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from memex.audit_entry import AuditEntry


@dataclass
class AuditFilter:
    """Criteria for selecting audit entries; unset fields match everything.

    ``action_type`` is an action kind name such as ``"Ingest"``; ``from_``
    and ``to`` bound the timestamp inclusively.
    """

    namespace: Optional[str] = None
    actor: Optional[str] = None
    action_type: Optional[str] = None
    from_: Optional[datetime] = None
    to: Optional[datetime] = None
    limit: Optional[int] = None
    offset: Optional[int] = None

    def matches(self, entry: AuditEntry) -> bool:
        if self.namespace is not None and entry.namespace != self.namespace:
            return False
        if self.actor is not None and entry.actor != self.actor:
            return False
        if self.action_type is not None and entry.action.kind != self.action_type:
            return False
        if self.from_ is not None and entry.timestamp < self.from_:
            return False
        if self.to is not None and entry.timestamp > self.to:
            return False
        return True