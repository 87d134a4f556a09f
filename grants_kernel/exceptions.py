"""
Typed Exception Hierarchy for the Grants Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejected proposal operation must tell the caller *which* rule stopped
it, because the caller reacts differently to each one:

  - VersionConflictError        -> re-fetch the proposal and retry
  - UnauthorizedTransitionError -> show "you cannot do this" to the user
  - InvalidTransitionError      -> the action is not offered in this state
  - NotEditableError            -> the proposal is locked for editing

Callers catch by type and read structured attributes; they never parse
message strings.

    try:
        proposal.transition_to(ProposalTransition.APPROVE, actor,
                               expected_version=7)
    except VersionConflictError as e:
        reload_and_retry(e.entity_id)
    except UnauthorizedTransitionError as e:
        api_response(code=e.code, state=e.state)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    GrantsKernelError (base)
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |   +-- StateMachineReentryError
    |
    +-- AuthorizationError
    |   +-- UnauthorizedTransitionError
    |   +-- UnauthorizedActionError
    |
    +-- ConcurrencyError
    |   +-- VersionConflictError
    |
    +-- ProposalError
    |   +-- ProposalNotFoundError
    |   +-- NotEditableError
    |   +-- NotDeletableError
    |   +-- InvalidProposalInputError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Workflow        | INVALID_TRANSITION          | No edge for (state, transition) or a guard vetoed it
                | STATE_MACHINE_REENTRY       | Guard/callback called back into the machine
----------------|-----------------------------|-----------------------------------------
Authorization   | UNAUTHORIZED                | Actor lacks the current state's roles
                | UNAUTHORIZED_ACTION         | Actor may not perform a service action (delete)
----------------|-----------------------------|-----------------------------------------
Concurrency     | VERSION_CONFLICT            | Expected version != stored version
----------------|-----------------------------|-----------------------------------------
Proposal        | PROPOSAL_NOT_FOUND          | No proposal with this id in the tenant
                | NOT_EDITABLE                | Field mutation outside Draft/InProgress/Revisions
                | NOT_DELETABLE               | Delete attempted outside Draft
                | INVALID_PROPOSAL_INPUT      | Create command failed validation
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Transition history row updated or deleted

===============================================================================
DESIGN DECISIONS
===============================================================================

1. ``code`` is a class attribute: it is static per type, so an HTTP layer
   can build its status table from the classes alone.

2. All context is stored as attributes.  The structured log formatter
   copies public exception attributes into the log record.

3. Nothing in the kernel retries.  Every error here means "no mutation
   occurred"; recovery is the caller's decision.
"""


class GrantsKernelError(Exception):
    """
    Base exception for all grants kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "GRANTS_KERNEL_ERROR"


# Workflow-related exceptions


class WorkflowError(GrantsKernelError):
    """Base exception for state machine errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """No edge exists for (state, transition), or a guard rejected it."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, from_state: str, transition: str, reason: str | None = None):
        self.from_state = str(from_state)
        self.transition = str(transition)
        self.reason = reason
        message = f"Invalid state transition {self.transition} from {self.from_state}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class StateMachineReentryError(WorkflowError):
    """
    A guard or enter/exit callback called back into the state machine
    that is currently evaluating it.
    """

    code: str = "STATE_MACHINE_REENTRY"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            f"Re-entrant call to state machine during '{operation}': "
            "guards and callbacks must not use the machine that invokes them"
        )


# Authorization-related exceptions


class AuthorizationError(GrantsKernelError):
    """Base exception for authorization failures."""

    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedTransitionError(AuthorizationError):
    """Actor's roles do not satisfy the current state's requirements."""

    code: str = "UNAUTHORIZED"

    def __init__(self, actor_id: str, state: str, transition: str):
        self.actor_id = str(actor_id)
        self.state = str(state)
        self.transition = str(transition)
        super().__init__(
            f"Actor {self.actor_id} is not authorized to {self.transition} "
            f"a proposal in state {self.state}"
        )


class UnauthorizedActionError(AuthorizationError):
    """Actor may not perform a non-transition action on a proposal."""

    code: str = "UNAUTHORIZED_ACTION"

    def __init__(self, actor_id: str, action: str, proposal_id: str):
        self.actor_id = str(actor_id)
        self.action = action
        self.proposal_id = str(proposal_id)
        super().__init__(
            f"Actor {self.actor_id} is not authorized to {action} proposal {self.proposal_id}"
        )


# Concurrency-related exceptions


class ConcurrencyError(GrantsKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class VersionConflictError(ConcurrencyError):
    """
    Optimistic concurrency conflict.

    The caller observed ``expected_version`` but the aggregate (or the
    stored row) is at ``actual_version``.  When the versions agree the
    stored row was still rewritten in between (a concurrent field edit);
    ``expected_revision`` / ``actual_revision`` then say by how much.
    Re-fetch and retry.
    """

    code: str = "VERSION_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int,
        actual_version: int | None = None,
        expected_revision: int | None = None,
        actual_revision: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.expected_version = expected_version
        self.actual_version = actual_version
        self.expected_revision = expected_revision
        self.actual_revision = actual_revision
        actual = "unknown" if actual_version is None else str(actual_version)
        message = (
            f"Version conflict on {entity_type} {self.entity_id}: "
            f"expected version {expected_version}, found {actual}"
        )
        if expected_revision is not None:
            message += f" (revision {expected_revision}, stored {actual_revision})"
        super().__init__(message)


# Proposal-related exceptions


class ProposalError(GrantsKernelError):
    """Base exception for proposal errors."""

    code: str = "PROPOSAL_ERROR"


class ProposalNotFoundError(ProposalError):
    """Proposal does not exist in the caller's tenant."""

    code: str = "PROPOSAL_NOT_FOUND"

    def __init__(self, proposal_id: str):
        self.proposal_id = str(proposal_id)
        super().__init__(f"Proposal not found: {self.proposal_id}")


class NotEditableError(ProposalError):
    """Field mutation attempted outside Draft, InProgress or Revisions."""

    code: str = "NOT_EDITABLE"

    def __init__(self, proposal_id: str, state: str):
        self.proposal_id = str(proposal_id)
        self.state = str(state)
        super().__init__(
            f"Proposal {self.proposal_id} cannot be edited in state {self.state}"
        )


class NotDeletableError(ProposalError):
    """Only draft proposals may be deleted."""

    code: str = "NOT_DELETABLE"

    def __init__(self, proposal_id: str, state: str):
        self.proposal_id = str(proposal_id)
        self.state = str(state)
        super().__init__(
            f"Proposal {self.proposal_id} cannot be deleted in state {self.state}: "
            "only draft proposals can be deleted"
        )


class InvalidProposalInputError(ProposalError):
    """A create or update command failed validation."""

    code: str = "INVALID_PROPOSAL_INPUT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid input for {field}: {reason}")


# Immutability-related exceptions


class ImmutabilityError(GrantsKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Transition history rows are append-only from creation.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {self.entity_id}: {reason}"
        )
