"""
grants_services.proposal_service -- Proposal use cases.

Responsibility:
    Application entry point for proposals: creation with input validation,
    reads, field edits, lifecycle transitions and deletion.  Each write
    loads the aggregate, applies one domain operation, saves it with a
    compare-and-swap on the loaded version and then hands the aggregate's
    queued events to the publisher.

Architecture position:
    Services layer.  May import from grants_kernel/ (domain, services).
    Thin coordinator: authorization of transitions, structural validity and
    version bookkeeping all live in ``grants_kernel.domain.proposal``.

Invariants enforced:
    - Events are published only after the save succeeded.  A failed
      transition or a lost compare-and-swap publishes nothing.
    - Domain errors propagate unchanged; nothing is retried here.
    - Only Draft proposals can be deleted, by their PI or an ADMIN.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Sequence
from uuid import UUID

from grants_kernel.domain.clock import Clock, SystemClock
from grants_kernel.domain.proposal import (
    ActorContext,
    Attachment,
    KeyPerson,
    Proposal,
    ProposalUpdates,
)
from grants_kernel.domain.proposal_workflow import (
    ProposalState,
    ProposalTransition,
    get_proposal_state_machine,
)
from grants_kernel.domain.state_machine import StateMachine
from grants_kernel.exceptions import (
    GrantsKernelError,
    InvalidProposalInputError,
    NotDeletableError,
    ProposalNotFoundError,
    UnauthorizedActionError,
    VersionConflictError,
)
from grants_kernel.logging_config import LogContext, get_logger
from grants_kernel.services.proposal_repository import ProposalRepository
from grants_services.event_publisher import EventPublisher, NullEventPublisher

logger = get_logger("services.proposal_service")

ADMIN_ROLE = "ADMIN"
DEFAULT_DEADLINE_WINDOW_DAYS = 7


@dataclass(frozen=True)
class CreateProposalInput:
    """Fields accepted when creating a proposal."""

    title: str
    owner_id: UUID
    sponsor_id: UUID
    department: str
    project_start: date
    project_end: date
    short_title: str = ""
    abstract: str = ""
    research_area: str = ""
    keywords: tuple[str, ...] = ()
    co_investigator_ids: tuple[UUID, ...] = ()
    sponsor_deadline: datetime | None = None
    internal_deadline: datetime | None = None
    irb_required: bool = False
    iacuc_required: bool = False
    ibc_required: bool = False
    export_control: bool = False
    conflict_of_interest: bool = False

    def validate(self) -> None:
        """Raise InvalidProposalInputError on the first invalid field."""
        if not self.title or not self.title.strip():
            raise InvalidProposalInputError("title", "title is required")
        if self.owner_id is None or self.owner_id.int == 0:
            raise InvalidProposalInputError("owner_id", "principal investigator is required")
        if self.sponsor_id is None or self.sponsor_id.int == 0:
            raise InvalidProposalInputError("sponsor_id", "sponsor is required")
        if self.project_end < self.project_start:
            raise InvalidProposalInputError(
                "project_end", "project end date must be after start date"
            )


class ProposalService:
    """Coordinates repository, aggregate and event publisher."""

    def __init__(
        self,
        repository: ProposalRepository,
        publisher: EventPublisher | None = None,
        clock: Clock | None = None,
        state_machine: StateMachine[ProposalState, ProposalTransition] | None = None,
    ) -> None:
        self._repository = repository
        self._publisher = publisher or NullEventPublisher()
        self._clock = clock or SystemClock()
        self._state_machine = state_machine or get_proposal_state_machine()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _publish(self, proposal: Proposal) -> None:
        for event in proposal.uncommitted_events:
            self._publisher.publish(event)
        proposal.clear_uncommitted_events()

    def _load(self, actor: ActorContext, proposal_id: UUID) -> Proposal:
        proposal = self._repository.find_by_id(actor.tenant_id, proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(proposal_id)
        proposal.state_machine = self._state_machine
        return proposal

    def _edit(
        self,
        actor: ActorContext,
        proposal_id: UUID,
        action: str,
        mutate: Callable[[Proposal], object],
        expected_version: int = 0,
    ) -> Proposal:
        with LogContext.for_actor(actor, proposal_id):
            proposal = self._load(actor, proposal_id)
            if expected_version > 0 and expected_version != proposal.version:
                raise VersionConflictError(
                    "Proposal", proposal_id, expected_version, proposal.version
                )
            changes = mutate(proposal)
            self._repository.save(proposal, expected_version=proposal.version)
            logger.info(
                "proposal_updated",
                extra={"action": action, "changes": changes, "version": proposal.version},
            )
            return proposal

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_proposal(self, actor: ActorContext, data: CreateProposalInput) -> Proposal:
        """Create and persist a Draft proposal at version 1."""
        data.validate()
        proposal = Proposal.create(
            tenant_id=actor.tenant_id,
            created_by=actor.actor_id,
            title=data.title.strip(),
            owner_id=data.owner_id,
            sponsor_id=data.sponsor_id,
            department=data.department,
            project_start=data.project_start,
            project_end=data.project_end,
            clock=self._clock,
            state_machine=self._state_machine,
        )
        proposal.update(
            actor.actor_id,
            ProposalUpdates(
                short_title=data.short_title,
                abstract=data.abstract,
                research_area=data.research_area,
                keywords=tuple(data.keywords),
                sponsor_deadline=data.sponsor_deadline,
                internal_deadline=data.internal_deadline,
                irb_required=data.irb_required,
                iacuc_required=data.iacuc_required,
                ibc_required=data.ibc_required,
                export_control=data.export_control,
                conflict_of_interest=data.conflict_of_interest,
            ),
            clock=self._clock,
        )
        for co_investigator_id in data.co_investigator_ids:
            proposal.add_co_investigator(actor.actor_id, co_investigator_id, clock=self._clock)

        with LogContext.for_actor(actor, proposal.id):
            self._repository.save(proposal)
            logger.info(
                "proposal_created",
                extra={
                    "proposal_number": proposal.proposal_number,
                    "owner_id": str(proposal.owner_id),
                    "sponsor_id": str(proposal.sponsor_id),
                },
            )
            self._publish(proposal)
        return proposal

    def update_proposal(
        self,
        actor: ActorContext,
        proposal_id: UUID,
        updates: ProposalUpdates,
        expected_version: int = 0,
    ) -> Proposal:
        """Apply field edits; editable states only."""
        return self._edit(
            actor,
            proposal_id,
            "update",
            lambda p: sorted(p.update(actor.actor_id, updates, clock=self._clock)),
            expected_version=expected_version,
        )

    def add_co_investigator(
        self, actor: ActorContext, proposal_id: UUID, co_investigator_id: UUID
    ) -> Proposal:
        return self._edit(
            actor,
            proposal_id,
            "add_co_investigator",
            lambda p: p.add_co_investigator(actor.actor_id, co_investigator_id, clock=self._clock),
        )

    def remove_co_investigator(
        self, actor: ActorContext, proposal_id: UUID, co_investigator_id: UUID
    ) -> Proposal:
        return self._edit(
            actor,
            proposal_id,
            "remove_co_investigator",
            lambda p: p.remove_co_investigator(
                actor.actor_id, co_investigator_id, clock=self._clock
            ),
        )

    def add_key_person(
        self, actor: ActorContext, proposal_id: UUID, key_person: KeyPerson
    ) -> Proposal:
        return self._edit(
            actor,
            proposal_id,
            "add_key_person",
            lambda p: p.add_key_person(actor.actor_id, key_person, clock=self._clock),
        )

    def add_attachment(
        self, actor: ActorContext, proposal_id: UUID, attachment: Attachment
    ) -> Attachment:
        """Attach a file and return the stamped attachment."""
        stamped: list[Attachment] = []
        self._edit(
            actor,
            proposal_id,
            "add_attachment",
            lambda p: stamped.append(p.add_attachment(actor.actor_id, attachment, clock=self._clock)),
        )
        return stamped[0]

    def transition_proposal(
        self,
        actor: ActorContext,
        proposal_id: UUID,
        transition: ProposalTransition,
        comment: str = "",
        expected_version: int = 0,
    ) -> Proposal:
        """Move a proposal along one lifecycle edge.

        Loads the proposal, applies the transition on the aggregate, saves
        it with a compare-and-swap on the version that was loaded and then
        publishes the resulting state-change event.

        Raises:
            ProposalNotFoundError: no such proposal in the actor's tenant.
            VersionConflictError: stale ``expected_version``, or another
                writer committed between load and save.
            UnauthorizedTransitionError: actor lacks a role for the state.
            InvalidTransitionError: no such edge, or a guard vetoed it.
        """
        with LogContext.for_actor(actor, proposal_id):
            proposal = self._load(actor, proposal_id)
            loaded_version = proposal.version
            from_state = proposal.state
            try:
                proposal.transition_to(
                    transition,
                    actor,
                    comment=comment,
                    expected_version=expected_version,
                    clock=self._clock,
                )
                self._repository.save(proposal, expected_version=loaded_version)
            except GrantsKernelError as exc:
                logger.warning(
                    "proposal_transition_rejected",
                    extra={
                        "from_state": from_state.value,
                        "transition": str(transition),
                        "error_code": exc.code,
                        "loaded_version": loaded_version,
                    },
                )
                raise

            logger.info(
                "proposal_transitioned",
                extra={
                    "from_state": from_state.value,
                    "to_state": proposal.state.value,
                    "transition": str(transition),
                    "version": proposal.version,
                },
            )
            self._publish(proposal)
            return proposal

    def delete_proposal(self, actor: ActorContext, proposal_id: UUID) -> None:
        """Delete a Draft proposal.  Only its PI or an ADMIN may do so."""
        with LogContext.for_actor(actor, proposal_id):
            proposal = self._load(actor, proposal_id)
            if proposal.state is not ProposalState.DRAFT:
                raise NotDeletableError(proposal_id, proposal.state)
            if proposal.owner_id != actor.actor_id and not actor.has_role(ADMIN_ROLE):
                raise UnauthorizedActionError(actor.actor_id, "delete", proposal_id)
            self._repository.delete(actor.tenant_id, proposal_id)
            logger.info("proposal_deleted", extra={"proposal_number": proposal.proposal_number})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_proposal(self, actor: ActorContext, proposal_id: UUID) -> Proposal:
        """Raises ProposalNotFoundError if absent from the actor's tenant."""
        return self._load(actor, proposal_id)

    def list_proposals(self, actor: ActorContext) -> Sequence[Proposal]:
        return self._repository.list(actor.tenant_id)

    def get_proposals_by_state(
        self, actor: ActorContext, state: ProposalState
    ) -> Sequence[Proposal]:
        return self._repository.list(actor.tenant_id, state=ProposalState(state))

    def count_by_state(self, actor: ActorContext) -> dict[ProposalState, int]:
        return self._repository.count_by_state(actor.tenant_id)

    def get_upcoming_deadlines(
        self, actor: ActorContext, days: int = DEFAULT_DEADLINE_WINDOW_DAYS
    ) -> list[Proposal]:
        """Open proposals whose sponsor deadline falls in the next ``days`` days.

        Non-positive ``days`` falls back to the default window.  Results are
        ordered by deadline, soonest first.
        """
        if days <= 0:
            days = DEFAULT_DEADLINE_WINDOW_DAYS
        now = self._clock.now()
        horizon = now + timedelta(days=days)
        upcoming = [
            p for p in self._repository.list(actor.tenant_id)
            if p.sponsor_deadline is not None
            and not p.state.is_terminal
            and now <= p.sponsor_deadline <= horizon
        ]
        upcoming.sort(key=lambda p: p.sponsor_deadline)
        return upcoming

    def get_available_transitions(
        self, actor: ActorContext, proposal_id: UUID
    ) -> frozenset[ProposalTransition]:
        return self._load(actor, proposal_id).get_available_transitions()
