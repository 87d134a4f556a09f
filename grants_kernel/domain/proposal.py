"""
Proposal aggregate (``grants_kernel.domain.proposal``).

Responsibility
--------------
Holds one grant proposal: identity, tenant, principal investigator, the
editable application fields, the current lifecycle state, the optimistic
concurrency version and the append-only transition history.  The only way
to change state is ``Proposal.transition_to``.

Architecture position
---------------------
**Kernel domain layer**.  ZERO I/O.  Time comes from an injected ``Clock``;
persistence and event delivery are the caller's job (see
``grants_services.proposal_service``).

Invariants enforced
-------------------
* ``state`` is always a ``ProposalState``.
* ``version`` starts at 1 and grows by exactly 1 per committed transition;
  field edits do not touch it.  ``len(transition_history) == version - 1``.
* History records are frozen and only ever appended.
* ``transition_to`` checks, in this order and stopping at the first
  failure: expected version, authorization against the *current* state's
  metadata, structural validity in the state machine.  A failed call leaves
  the aggregate unchanged.
* Field mutations require ``can_edit()`` (Draft, InProgress, Revisions).

Concurrency
-----------
No in-process lock.  Two callers racing on the same proposal each pass the
version they observed; the repository's compare-and-swap lets exactly one
of them persist, the other gets ``VersionConflictError`` and must reload.
The swap also compares ``revision``, which every save bumps, so two field
edits made at the same version cannot overwrite each other.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from uuid import UUID, uuid4

from grants_kernel.domain.clock import Clock, SystemClock
from grants_kernel.domain.events import (
    DomainEvent,
    ProposalCreatedEvent,
    ProposalStateChangedEvent,
)
from grants_kernel.domain.proposal_workflow import (
    ProposalState,
    ProposalTransition,
    get_proposal_state_machine,
)
from grants_kernel.domain.state_machine import StateMachine
from grants_kernel.domain.state_metadata import get_state_metadata
from grants_kernel.exceptions import (
    InvalidTransitionError,
    NotEditableError,
    UnauthorizedTransitionError,
    VersionConflictError,
)


@dataclass(frozen=True)
class ActorContext:
    """Who is acting: supplied by the authentication layer."""

    tenant_id: UUID
    actor_id: UUID
    roles: frozenset[str] = frozenset()

    def has_role(self, role: str) -> bool:
        return role in self.roles


@dataclass(frozen=True)
class StateTransitionRecord:
    """One committed transition in a proposal's history."""

    from_state: ProposalState
    to_state: ProposalState
    transition: ProposalTransition
    actor_id: UUID
    performed_at: datetime
    comment: str = ""


@dataclass(frozen=True)
class KeyPerson:
    """Key personnel entry; effort is a percentage."""

    person_id: UUID
    role: str
    effort: float
    calendar_months: float = 0.0
    academic_months: float = 0.0
    summer_months: float = 0.0


@dataclass(frozen=True)
class Attachment:
    """File attached to a proposal (e.g. narrative, budget, bio_sketch)."""

    file_name: str
    file_type: str
    file_size_bytes: int
    storage_path: str
    category: str
    uploaded_by: UUID | None = None
    uploaded_at: datetime | None = None
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class ProposalUpdates:
    """Optional field changes; ``None`` leaves a field untouched."""

    title: str | None = None
    short_title: str | None = None
    abstract: str | None = None
    research_area: str | None = None
    keywords: tuple[str, ...] | None = None
    sponsor_deadline: datetime | None = None
    internal_deadline: datetime | None = None
    irb_required: bool | None = None
    iacuc_required: bool | None = None
    ibc_required: bool | None = None
    export_control: bool | None = None
    conflict_of_interest: bool | None = None

    _FIELDS = (
        "title", "short_title", "abstract", "research_area", "keywords",
        "sponsor_deadline", "internal_deadline", "irb_required",
        "iacuc_required", "ibc_required", "export_control",
        "conflict_of_interest",
    )

    def changed_fields(self) -> dict[str, object]:
        return {
            name: getattr(self, name)
            for name in self._FIELDS
            if getattr(self, name) is not None
        }


def generate_proposal_number(proposal_id: UUID, created_at: datetime) -> str:
    """``PROP-<year>-<first six hex digits of the id>``."""
    return f"PROP-{created_at.year}-{proposal_id.hex[:6].upper()}"


@dataclass(eq=False)
class Proposal:
    """Aggregate root for grant proposals."""

    tenant_id: UUID
    owner_id: UUID
    title: str
    sponsor_id: UUID
    department: str
    project_start: date
    project_end: date
    created_at: datetime
    created_by: UUID
    id: UUID = field(default_factory=uuid4)
    proposal_number: str = ""
    state: ProposalState = ProposalState.DRAFT
    version: int = 1
    # storage revision, bumped by the repository on every save
    revision: int = 1
    short_title: str = ""
    abstract: str = ""
    external_id: str = ""
    research_area: str = ""
    keywords: tuple[str, ...] = ()
    co_investigator_ids: tuple[UUID, ...] = ()
    key_personnel: tuple[KeyPerson, ...] = ()
    attachments: tuple[Attachment, ...] = ()
    sponsor_deadline: datetime | None = None
    internal_deadline: datetime | None = None
    irb_required: bool = False
    iacuc_required: bool = False
    ibc_required: bool = False
    export_control: bool = False
    conflict_of_interest: bool = False
    transition_history: tuple[StateTransitionRecord, ...] = ()
    updated_at: datetime | None = None
    updated_by: UUID | None = None
    state_machine: StateMachine[ProposalState, ProposalTransition] = field(
        default_factory=get_proposal_state_machine, repr=False
    )
    _uncommitted_events: list[DomainEvent] = field(default_factory=list, repr=False)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        *,
        tenant_id: UUID,
        created_by: UUID,
        title: str,
        owner_id: UUID,
        sponsor_id: UUID,
        department: str,
        project_start: date,
        project_end: date,
        clock: Clock | None = None,
        state_machine: StateMachine[ProposalState, ProposalTransition] | None = None,
    ) -> Proposal:
        """New Draft proposal at version 1 with an empty history."""
        now = (clock or SystemClock()).now()
        proposal = cls(
            tenant_id=tenant_id,
            owner_id=owner_id,
            title=title,
            sponsor_id=sponsor_id,
            department=department,
            project_start=project_start,
            project_end=project_end,
            created_at=now,
            created_by=created_by,
            updated_at=now,
            updated_by=created_by,
            state_machine=state_machine or get_proposal_state_machine(),
        )
        proposal.proposal_number = generate_proposal_number(proposal.id, now)
        proposal._uncommitted_events.append(ProposalCreatedEvent(
            aggregate_id=proposal.id,
            tenant_id=tenant_id,
            occurred_at=now,
            version=proposal.version,
            title=title,
            owner_id=owner_id,
            sponsor_id=sponsor_id,
        ))
        return proposal

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_authorized(self, actor: ActorContext, transition: ProposalTransition) -> bool:
        """Whether ``actor`` may apply ``transition`` in the current state.

        Roles are checked against the current state's metadata.  A state
        without a registry entry requires no roles and so grants none; the
        PI may still withdraw their own proposal from it.
        """
        metadata = get_state_metadata(self.state)
        if actor.roles & metadata.required_roles:
            return True
        return transition is ProposalTransition.WITHDRAW and actor.actor_id == self.owner_id

    def transition_to(
        self,
        transition: ProposalTransition,
        actor: ActorContext,
        comment: str = "",
        expected_version: int = 0,
        clock: Clock | None = None,
    ) -> ProposalState:
        """Apply ``transition`` and return the new state.

        Raises:
            VersionConflictError: ``expected_version`` is set and stale.
            UnauthorizedTransitionError: actor may not act in this state.
            InvalidTransitionError: no such edge, or a guard vetoed it.
        """
        if expected_version > 0 and expected_version != self.version:
            raise VersionConflictError(
                "Proposal", self.id, expected_version, self.version
            )

        try:
            transition = ProposalTransition(transition)
        except ValueError:
            raise InvalidTransitionError(self.state, transition, "unknown transition") from None

        if not self.is_authorized(actor, transition):
            raise UnauthorizedTransitionError(actor.actor_id, self.state, transition)

        next_state = self.state_machine.get_next_state(self.state, transition)

        now = (clock or SystemClock()).now()
        from_state = self.state
        self.transition_history = (*self.transition_history, StateTransitionRecord(
            from_state=from_state,
            to_state=next_state,
            transition=transition,
            actor_id=actor.actor_id,
            performed_at=now,
            comment=comment,
        ))
        self.state = next_state
        self.version += 1
        self._touch(actor.actor_id, now)

        self._uncommitted_events.append(ProposalStateChangedEvent(
            aggregate_id=self.id,
            tenant_id=self.tenant_id,
            occurred_at=now,
            version=self.version,
            from_state=from_state.value,
            to_state=next_state.value,
            transition=transition.value,
            actor_id=actor.actor_id,
            reason=comment,
            notify_roles=get_state_metadata(next_state).notified_roles,
        ))
        return next_state

    def get_available_transitions(self) -> frozenset[ProposalTransition]:
        """Transitions the state machine allows from the current state."""
        return self.state_machine.get_available_transitions(self.state)

    def can_edit(self) -> bool:
        return self.state.can_edit

    # ------------------------------------------------------------------
    # Field mutations
    # ------------------------------------------------------------------

    def _require_editable(self) -> None:
        if not self.can_edit():
            raise NotEditableError(self.id, self.state)

    def _touch(self, actor_id: UUID, now: datetime) -> None:
        self.updated_at = now
        self.updated_by = actor_id

    def update(
        self, actor_id: UUID, updates: ProposalUpdates, clock: Clock | None = None
    ) -> dict[str, object]:
        """Apply ``updates`` and return the fields that were set."""
        self._require_editable()
        changed = updates.changed_fields()
        for name, value in changed.items():
            setattr(self, name, tuple(value) if name == "keywords" else value)
        self._touch(actor_id, (clock or SystemClock()).now())
        return changed

    def add_co_investigator(
        self, actor_id: UUID, co_investigator_id: UUID, clock: Clock | None = None
    ) -> None:
        self._require_editable()
        if co_investigator_id in self.co_investigator_ids:
            return
        self.co_investigator_ids = (*self.co_investigator_ids, co_investigator_id)
        self._touch(actor_id, (clock or SystemClock()).now())

    def remove_co_investigator(
        self, actor_id: UUID, co_investigator_id: UUID, clock: Clock | None = None
    ) -> None:
        self._require_editable()
        if co_investigator_id not in self.co_investigator_ids:
            return
        self.co_investigator_ids = tuple(
            c for c in self.co_investigator_ids if c != co_investigator_id
        )
        self._touch(actor_id, (clock or SystemClock()).now())

    def add_key_person(
        self, actor_id: UUID, key_person: KeyPerson, clock: Clock | None = None
    ) -> None:
        self._require_editable()
        self.key_personnel = (*self.key_personnel, key_person)
        self._touch(actor_id, (clock or SystemClock()).now())

    def add_attachment(
        self, actor_id: UUID, attachment: Attachment, clock: Clock | None = None
    ) -> Attachment:
        """Attach a file, stamping uploader and upload time."""
        self._require_editable()
        now = (clock or SystemClock()).now()
        stamped = replace(attachment, uploaded_by=actor_id, uploaded_at=now)
        self.attachments = (*self.attachments, stamped)
        self._touch(actor_id, now)
        return stamped

    # ------------------------------------------------------------------
    # Deadlines
    # ------------------------------------------------------------------

    def is_overdue(self, clock: Clock | None = None) -> bool:
        if self.sponsor_deadline is None:
            return False
        return (clock or SystemClock()).now() > self.sponsor_deadline

    def days_until_deadline(self, clock: Clock | None = None) -> int | None:
        if self.sponsor_deadline is None:
            return None
        remaining = self.sponsor_deadline - (clock or SystemClock()).now()
        return int(remaining.total_seconds() / 86400)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    @property
    def uncommitted_events(self) -> tuple[DomainEvent, ...]:
        return tuple(self._uncommitted_events)

    def clear_uncommitted_events(self) -> None:
        self._uncommitted_events.clear()
