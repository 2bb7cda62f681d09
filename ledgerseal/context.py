"""
LedgerSeal - Actor Context

Who is performing an operation and from where. Passed explicitly into every
service call that writes an audit entry.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID


@dataclass(frozen=True)
class ActorContext:
    tenant_id: UUID
    user_id: Optional[UUID] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def system(cls, tenant_id: UUID) -> "ActorContext":
        """Context for batch jobs and CLI runs with no end user."""
        return cls(tenant_id=tenant_id, user_agent="ledgerseal-cli")
