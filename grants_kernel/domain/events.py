"""
Proposal domain events (``grants_kernel.domain.events``).

Responsibility
--------------
Immutable records of facts about a proposal, queued on the aggregate and
handed to an event publisher once the change is persisted.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

PROPOSAL_AGGREGATE = "Proposal"


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """Common envelope of every domain event."""

    event_type: str
    aggregate_id: UUID
    tenant_id: UUID
    occurred_at: datetime
    version: int
    aggregate_type: str = PROPOSAL_AGGREGATE
    event_id: UUID = field(default_factory=uuid4)

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict form for publishers and log records."""
        payload = asdict(self)
        for key, value in payload.items():
            if isinstance(value, UUID):
                payload[key] = str(value)
            elif isinstance(value, datetime):
                payload[key] = value.isoformat()
            elif isinstance(value, frozenset):
                payload[key] = sorted(value)
        return payload


@dataclass(frozen=True, kw_only=True)
class ProposalCreatedEvent(DomainEvent):
    """Emitted when a proposal is created."""

    event_type: str = "proposal.created"
    title: str
    owner_id: UUID
    sponsor_id: UUID


@dataclass(frozen=True, kw_only=True)
class ProposalStateChangedEvent(DomainEvent):
    """Emitted when a transition commits.  ``version`` is the new version."""

    event_type: str = "proposal.state_changed"
    from_state: str
    to_state: str
    transition: str
    actor_id: UUID
    reason: str = ""
    notify_roles: frozenset[str] = frozenset()
