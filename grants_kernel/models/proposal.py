"""
Module: grants_kernel.models.proposal
Responsibility: ORM persistence for proposals and their transition history.

Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions.py only.

Invariants enforced:
    - ``proposals.version`` counts committed transitions and
      ``proposals.revision`` counts saves.  Writers update with
      ``WHERE version = :expected AND revision = :loaded`` and bump
      ``revision`` (see services/proposal_repository.py).
    - ``proposal_transitions`` is append-only.  UNIQUE(proposal_id, sequence)
      rejects a second writer appending the same history slot; ORM
      UPDATE/DELETE on a transition row raises ImmutabilityViolationError.
    - ``state`` holds one of the ProposalState codes (CHECK constraint).

Failure modes:
    - IntegrityError on duplicate (proposal_id, sequence).
    - ImmutabilityViolationError on transition UPDATE/DELETE through the ORM.
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from grants_kernel.db.base import Base, TrackedBase, UUIDString
from grants_kernel.exceptions import ImmutabilityViolationError

_STATE_CODES = (
    "DRAFT", "IN_PROGRESS", "INTERNAL_REVIEW", "DEPT_REVIEW", "OSP_REVIEW",
    "COMPLIANCE_REVIEW", "BUDGET_REVIEW", "PENDING_APPROVAL", "APPROVED",
    "REJECTED", "REVISIONS_REQUESTED", "READY_TO_SUBMIT", "SUBMITTED",
    "UNDER_SPONSOR_REVIEW", "AWARDED", "NEGOTIATION", "DECLINED", "NOT_FUNDED",
    "ACTIVE", "CLOSEOUT", "CLOSED", "WITHDRAWN",
)


def _in_list(column: str, codes: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{code}'" for code in codes)
    return f"{column} IN ({quoted})"


class ProposalModel(TrackedBase):
    """Persistent proposal row.

    Collections (keywords, co-investigators, key personnel, attachments)
    are small and always loaded with the proposal, so they are stored as
    JSON documents rather than child tables.
    """

    __tablename__ = "proposals"

    __table_args__ = (
        CheckConstraint(_in_list("state", _STATE_CODES), name="ck_proposals_valid_state"),
        CheckConstraint("version >= 1", name="ck_proposals_version_positive"),
        CheckConstraint("revision >= 1", name="ck_proposals_revision_positive"),
        UniqueConstraint("proposal_number", name="uq_proposals_number"),
        Index("idx_proposals_tenant_state", "tenant_id", "state"),
        Index("idx_proposals_sponsor_deadline", "sponsor_deadline"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    proposal_number: Mapped[str] = mapped_column(String(32), nullable=False)
    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    sponsor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    short_title: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    abstract: Mapped[str] = mapped_column(Text, nullable=False, default="")
    external_id: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    department: Mapped[str] = mapped_column(String(200), nullable=False)
    research_area: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    keywords: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    project_start: Mapped[date] = mapped_column(Date, nullable=False)
    project_end: Mapped[date] = mapped_column(Date, nullable=False)
    sponsor_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    internal_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    state: Mapped[str] = mapped_column(String(40), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    co_investigator_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    key_personnel: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    attachments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    irb_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    iacuc_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ibc_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    export_control: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    conflict_of_interest: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    transitions: Mapped[list[ProposalTransitionModel]] = relationship(
        back_populates="proposal",
        order_by="ProposalTransitionModel.sequence",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Proposal {self.proposal_number}: {self.state} v{self.version}>"


class ProposalTransitionModel(Base):
    """Append-only row for one committed transition.

    ``sequence`` is the proposal version the transition produced minus one,
    so a proposal's rows are numbered 1..version-1 without gaps.
    """

    __tablename__ = "proposal_transitions"

    __table_args__ = (
        UniqueConstraint("proposal_id", "sequence", name="uq_proposal_transition_sequence"),
        CheckConstraint("sequence >= 1", name="ck_proposal_transitions_sequence_positive"),
        Index("idx_proposal_transitions_actor", "actor_id"),
    )

    proposal_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    from_state: Mapped[str] = mapped_column(String(40), nullable=False)
    to_state: Mapped[str] = mapped_column(String(40), nullable=False)
    transition: Mapped[str] = mapped_column(String(40), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")

    proposal: Mapped[ProposalModel] = relationship(back_populates="transitions")

    def __repr__(self) -> str:
        return (
            f"<ProposalTransition #{self.sequence} "
            f"{self.from_state} --{self.transition}--> {self.to_state}>"
        )


# =============================================================================
# ORM-Level Immutability for Transition History (Append-Only)
# =============================================================================


@event.listens_for(ProposalTransitionModel, "before_update")
def prevent_transition_update(mapper, connection, target):
    """Prevent updates to transition history records."""
    raise ImmutabilityViolationError(
        entity_type="ProposalTransition",
        entity_id=str(target.id),
        reason="Transition history is append-only -- cannot modify",
    )


@event.listens_for(ProposalTransitionModel, "before_delete")
def prevent_transition_delete(mapper, connection, target):
    """Prevent deletion of transition history records."""
    raise ImmutabilityViolationError(
        entity_type="ProposalTransition",
        entity_id=str(target.id),
        reason="Transition history is append-only -- cannot delete",
    )
