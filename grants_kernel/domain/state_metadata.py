"""
State metadata registry (``grants_kernel.domain.state_metadata``).

Responsibility
--------------
Static lookup from a proposal state to its display name, the roles allowed
to act on a proposal in that state, the roles to notify when a proposal
enters it, and its review SLA.

Architecture position
---------------------
**Kernel domain layer** -- built once at import, read-only afterwards.

Invariants enforced
-------------------
* The registry is a read-only mapping; entries are frozen.
* Unlisted states resolve to a fallback with empty role sets and a zero
  SLA.  Coverage is partial and left that way: nobody holds a role for an
  unlisted state, so only the PI's own withdrawal can leave it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from grants_kernel.domain.proposal_workflow import ProposalState


@dataclass(frozen=True)
class StateMetadata:
    """Presentation and authorization attributes of one proposal state."""

    state: ProposalState
    display_name: str
    description: str
    required_roles: frozenset[str] = field(default_factory=frozenset)
    notified_roles: frozenset[str] = field(default_factory=frozenset)
    sla_hours: int = 0

    def __post_init__(self) -> None:
        if self.sla_hours < 0:
            raise ValueError(f"sla_hours must be non-negative, got {self.sla_hours}")

    @property
    def has_role_policy(self) -> bool:
        """True when acting in this state requires one of ``required_roles``."""
        return bool(self.required_roles)


def _meta(
    state: ProposalState,
    display_name: str,
    description: str,
    required: tuple[str, ...],
    notified: tuple[str, ...] = (),
    sla_hours: int = 0,
) -> tuple[ProposalState, StateMetadata]:
    return state, StateMetadata(
        state=state,
        display_name=display_name,
        description=description,
        required_roles=frozenset(required),
        notified_roles=frozenset(notified),
        sla_hours=sla_hours,
    )


STATE_METADATA: Mapping[ProposalState, StateMetadata] = MappingProxyType(dict([
    _meta(
        ProposalState.DRAFT, "Draft", "Proposal is being drafted",
        ("PI", "PROPOSAL_CREATOR"),
    ),
    _meta(
        ProposalState.IN_PROGRESS, "In Progress", "Proposal is actively being developed",
        ("PI", "PROPOSAL_CREATOR"), ("PI",),
    ),
    _meta(
        ProposalState.INTERNAL_REVIEW, "Internal Review",
        "Proposal is under initial internal review",
        ("REVIEWER", "DEPT_ADMIN"), ("PI", "DEPT_ADMIN"), 48,
    ),
    _meta(
        ProposalState.DEPT_REVIEW, "Department Review", "Proposal is under department review",
        ("DEPT_HEAD", "DEPT_ADMIN"), ("PI", "DEPT_HEAD"), 72,
    ),
    _meta(
        ProposalState.OSP_REVIEW, "OSP Review",
        "Proposal is under Office of Sponsored Programs review",
        ("OSP_OFFICER",), ("PI", "DEPT_HEAD", "OSP_OFFICER"), 96,
    ),
    _meta(
        ProposalState.COMPLIANCE, "Compliance Review", "Proposal is under compliance review",
        ("COMPLIANCE_OFFICER",), ("PI", "OSP_OFFICER"), 72,
    ),
    _meta(
        ProposalState.BUDGET_REVIEW, "Budget Review", "Proposal budget is under review",
        ("BUDGET_OFFICER", "OSP_OFFICER"), ("PI", "OSP_OFFICER"), 48,
    ),
    _meta(
        ProposalState.PENDING_APPROVAL, "Pending Approval", "Proposal is pending final approval",
        ("OSP_DIRECTOR", "AUTHORIZED_SIGNATORY"), ("PI", "OSP_DIRECTOR"), 24,
    ),
    _meta(
        ProposalState.APPROVED, "Approved", "Proposal has been approved for submission",
        ("OSP_OFFICER",), ("PI", "OSP_OFFICER"),
    ),
    _meta(
        ProposalState.SUBMITTED, "Submitted", "Proposal has been submitted to sponsor",
        ("OSP_OFFICER",), ("PI", "OSP_OFFICER", "DEPT_HEAD"),
    ),
    _meta(
        ProposalState.AWARDED, "Awarded", "Proposal has been awarded",
        ("OSP_OFFICER", "GRANTS_ADMIN"), ("PI", "OSP_OFFICER", "DEPT_HEAD", "GRANTS_ADMIN"),
    ),
    _meta(
        ProposalState.ACTIVE, "Active", "Award is active and funds are being expended",
        ("PI", "GRANTS_ADMIN"), ("PI", "GRANTS_ADMIN"),
    ),
    _meta(
        ProposalState.CLOSED, "Closed", "Award has been closed out",
        ("GRANTS_ADMIN",),
    ),
]))


def get_state_metadata(state: ProposalState) -> StateMetadata:
    """Metadata for ``state``, or the role-less fallback if it has no entry."""
    metadata = STATE_METADATA.get(state)
    if metadata is not None:
        return metadata
    return StateMetadata(
        state=state,
        display_name=str(state),
        description="Unknown state",
    )
