"""
Grant proposal lifecycle (``grants_kernel.domain.proposal_workflow``).

Responsibility
--------------
Defines the 22 proposal states, the 16 transition symbols and the edges
that connect them, and provides the shared ``StateMachine`` instance that
the proposal aggregate resolves transitions against.

Architecture position
---------------------
**Kernel domain layer**.  ZERO I/O.

Lifecycle
---------
::

    DRAFT --START--> IN_PROGRESS --SUBMIT_FOR_REVIEW--> INTERNAL_REVIEW
    INTERNAL_REVIEW -> DEPT_REVIEW -> OSP_REVIEW -> COMPLIANCE_REVIEW
        -> BUDGET_REVIEW -> PENDING_APPROVAL           (ADVANCE_REVIEW)
    every review stage and PENDING_APPROVAL --REQUEST_REVISIONS--> REVISIONS_REQUESTED
    REVISIONS_REQUESTED --SUBMIT_FOR_REVIEW--> INTERNAL_REVIEW
    PENDING_APPROVAL --APPROVE--> APPROVED | --REJECT--> REJECTED
    APPROVED --SUBMIT_TO_SPONSOR--> READY_TO_SUBMIT --SUBMIT_TO_SPONSOR--> SUBMITTED
    SUBMITTED --ADVANCE_REVIEW--> UNDER_SPONSOR_REVIEW
    UNDER_SPONSOR_REVIEW --AWARD|NEGOTIATE|DECLINE|NOT_FUND-->
    NEGOTIATION --AWARD|DECLINE-->
    AWARDED --ACTIVATE--> ACTIVE --CLOSEOUT--> CLOSEOUT --CLOSE--> CLOSED
    eleven pre-submission states --WITHDRAW--> WITHDRAWN
    REJECTED --REOPEN--> DRAFT
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from grants_kernel.domain.state_machine import StateMachine
from grants_kernel.domain.workflow import Transition, Workflow
from grants_kernel.exceptions import InvalidTransitionError


class ProposalState(str, Enum):
    """Lifecycle phase of a proposal."""

    # Initial
    DRAFT = "DRAFT"
    IN_PROGRESS = "IN_PROGRESS"

    # Internal review
    INTERNAL_REVIEW = "INTERNAL_REVIEW"
    DEPT_REVIEW = "DEPT_REVIEW"
    OSP_REVIEW = "OSP_REVIEW"
    COMPLIANCE = "COMPLIANCE_REVIEW"
    BUDGET_REVIEW = "BUDGET_REVIEW"

    # Approval
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REVISIONS = "REVISIONS_REQUESTED"

    # Submission
    READY_TO_SUBMIT = "READY_TO_SUBMIT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_SPONSOR_REVIEW"

    # Award
    AWARDED = "AWARDED"
    NEGOTIATION = "NEGOTIATION"
    DECLINED = "DECLINED"
    NOT_FUNDED = "NOT_FUNDED"

    # Post-award
    ACTIVE = "ACTIVE"
    CLOSEOUT = "CLOSEOUT"
    CLOSED = "CLOSED"

    WITHDRAWN = "WITHDRAWN"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def is_active(self) -> bool:
        """True while the award is running (funds being expended or closing out)."""
        return self in (ProposalState.ACTIVE, ProposalState.CLOSEOUT)

    @property
    def can_edit(self) -> bool:
        return self in EDITABLE_STATES


class ProposalTransition(str, Enum):
    """Named action that moves a proposal between states."""

    START = "START"
    SUBMIT_FOR_REVIEW = "SUBMIT_FOR_REVIEW"
    ADVANCE_REVIEW = "ADVANCE_REVIEW"
    REQUEST_REVISIONS = "REQUEST_REVISIONS"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    SUBMIT_TO_SPONSOR = "SUBMIT_TO_SPONSOR"
    AWARD = "AWARD"
    NEGOTIATE = "NEGOTIATE"
    DECLINE = "DECLINE"
    NOT_FUND = "NOT_FUND"
    ACTIVATE = "ACTIVATE"
    CLOSEOUT = "CLOSEOUT"
    CLOSE = "CLOSE"
    WITHDRAW = "WITHDRAW"
    REOPEN = "REOPEN"

    def __str__(self) -> str:
        return self.value


TERMINAL_STATES: frozenset[ProposalState] = frozenset({
    ProposalState.CLOSED,
    ProposalState.WITHDRAWN,
    ProposalState.DECLINED,
    ProposalState.NOT_FUNDED,
})

EDITABLE_STATES: frozenset[ProposalState] = frozenset({
    ProposalState.DRAFT,
    ProposalState.IN_PROGRESS,
    ProposalState.REVISIONS,
})

REVIEW_CHAIN: tuple[ProposalState, ...] = (
    ProposalState.INTERNAL_REVIEW,
    ProposalState.DEPT_REVIEW,
    ProposalState.OSP_REVIEW,
    ProposalState.COMPLIANCE,
    ProposalState.BUDGET_REVIEW,
)

WITHDRAWABLE_STATES: tuple[ProposalState, ...] = (
    ProposalState.DRAFT,
    ProposalState.IN_PROGRESS,
    ProposalState.INTERNAL_REVIEW,
    ProposalState.DEPT_REVIEW,
    ProposalState.OSP_REVIEW,
    ProposalState.COMPLIANCE,
    ProposalState.BUDGET_REVIEW,
    ProposalState.PENDING_APPROVAL,
    ProposalState.APPROVED,
    ProposalState.REVISIONS,
    ProposalState.READY_TO_SUBMIT,
)


def _review_chain_edges() -> tuple[Transition, ...]:
    edges: list[Transition] = []
    targets = REVIEW_CHAIN[1:] + (ProposalState.PENDING_APPROVAL,)
    for stage, next_stage in zip(REVIEW_CHAIN, targets):
        edges.append(Transition(stage, next_stage, ProposalTransition.ADVANCE_REVIEW))
        edges.append(Transition(stage, ProposalState.REVISIONS, ProposalTransition.REQUEST_REVISIONS))
    return tuple(edges)


_S = ProposalState
_T = ProposalTransition

PROPOSAL_TRANSITIONS: tuple[Transition, ...] = (
    # Intake
    Transition(_S.DRAFT, _S.IN_PROGRESS, _T.START),
    Transition(_S.IN_PROGRESS, _S.INTERNAL_REVIEW, _T.SUBMIT_FOR_REVIEW),
    # Review chain
    *_review_chain_edges(),
    # Approval
    Transition(_S.PENDING_APPROVAL, _S.APPROVED, _T.APPROVE),
    Transition(_S.PENDING_APPROVAL, _S.REJECTED, _T.REJECT),
    Transition(_S.PENDING_APPROVAL, _S.REVISIONS, _T.REQUEST_REVISIONS),
    # Revisions restart the whole review chain
    Transition(_S.REVISIONS, _S.INTERNAL_REVIEW, _T.SUBMIT_FOR_REVIEW),
    # Submission: two hops on the same symbol
    Transition(_S.APPROVED, _S.READY_TO_SUBMIT, _T.SUBMIT_TO_SPONSOR),
    Transition(_S.READY_TO_SUBMIT, _S.SUBMITTED, _T.SUBMIT_TO_SPONSOR),
    Transition(_S.SUBMITTED, _S.UNDER_REVIEW, _T.ADVANCE_REVIEW),
    # Sponsor outcomes
    Transition(_S.UNDER_REVIEW, _S.AWARDED, _T.AWARD),
    Transition(_S.UNDER_REVIEW, _S.NEGOTIATION, _T.NEGOTIATE),
    Transition(_S.UNDER_REVIEW, _S.DECLINED, _T.DECLINE),
    Transition(_S.UNDER_REVIEW, _S.NOT_FUNDED, _T.NOT_FUND),
    Transition(_S.NEGOTIATION, _S.AWARDED, _T.AWARD),
    Transition(_S.NEGOTIATION, _S.DECLINED, _T.DECLINE),
    # Post-award
    Transition(_S.AWARDED, _S.ACTIVE, _T.ACTIVATE),
    Transition(_S.ACTIVE, _S.CLOSEOUT, _T.CLOSEOUT),
    Transition(_S.CLOSEOUT, _S.CLOSED, _T.CLOSE),
    # Withdrawal
    *(Transition(state, _S.WITHDRAWN, _T.WITHDRAW) for state in WITHDRAWABLE_STATES),
    # Rejected proposals can only be reopened
    Transition(_S.REJECTED, _S.DRAFT, _T.REOPEN),
)

PROPOSAL_WORKFLOW = Workflow(
    name="grant_proposal",
    description="Grant proposal lifecycle from drafting through award closeout",
    initial_state=ProposalState.DRAFT,
    states=tuple(ProposalState),
    transitions=PROPOSAL_TRANSITIONS,
    terminal_states=tuple(sorted(TERMINAL_STATES, key=lambda s: s.value)),
)


def build_proposal_state_machine() -> StateMachine[ProposalState, ProposalTransition]:
    """Build a fresh machine holding the proposal lifecycle edges."""
    return PROPOSAL_WORKFLOW.build()


@lru_cache(maxsize=1)
def get_proposal_state_machine() -> StateMachine[ProposalState, ProposalTransition]:
    """The process-wide machine shared by every proposal aggregate."""
    return build_proposal_state_machine()


def find_transition(
    from_state: ProposalState,
    to_state: ProposalState,
    machine: StateMachine[ProposalState, ProposalTransition] | None = None,
) -> ProposalTransition:
    """Return the transition that moves ``from_state`` to ``to_state``.

    Raises:
        InvalidTransitionError: no available transition links the two states.
    """
    machine = machine or get_proposal_state_machine()
    for transition in sorted(machine.get_available_transitions(from_state), key=lambda t: t.value):
        if machine.get_next_state(from_state, transition) is to_state:
            return transition
    raise InvalidTransitionError(from_state, f"-> {to_state}", "no transition links these states")
