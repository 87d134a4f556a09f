"""
Pure domain layer.

Proposal lifecycle types and rules with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time (injected through Clock)
- I/O
"""

from grants_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from grants_kernel.domain.events import (
    DomainEvent,
    ProposalCreatedEvent,
    ProposalStateChangedEvent,
)
from grants_kernel.domain.proposal import (
    ActorContext,
    Attachment,
    KeyPerson,
    Proposal,
    ProposalUpdates,
    StateTransitionRecord,
)
from grants_kernel.domain.proposal_workflow import (
    EDITABLE_STATES,
    PROPOSAL_WORKFLOW,
    TERMINAL_STATES,
    WITHDRAWABLE_STATES,
    ProposalState,
    ProposalTransition,
    build_proposal_state_machine,
    find_transition,
    get_proposal_state_machine,
)
from grants_kernel.domain.state_machine import StateMachine, TransitionInfo
from grants_kernel.domain.state_metadata import (
    STATE_METADATA,
    StateMetadata,
    get_state_metadata,
)
from grants_kernel.domain.workflow import Transition, Workflow

__all__ = [
    "ActorContext",
    "Attachment",
    "Clock",
    "DeterministicClock",
    "DomainEvent",
    "EDITABLE_STATES",
    "KeyPerson",
    "PROPOSAL_WORKFLOW",
    "Proposal",
    "ProposalCreatedEvent",
    "ProposalState",
    "ProposalStateChangedEvent",
    "ProposalTransition",
    "ProposalUpdates",
    "STATE_METADATA",
    "StateMachine",
    "StateMetadata",
    "StateTransitionRecord",
    "SystemClock",
    "TERMINAL_STATES",
    "Transition",
    "TransitionInfo",
    "WITHDRAWABLE_STATES",
    "Workflow",
    "build_proposal_state_machine",
    "find_transition",
    "get_proposal_state_machine",
    "get_state_metadata",
]
