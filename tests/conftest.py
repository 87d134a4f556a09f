"""
Pytest fixtures for the grants kernel test suite.

Provides:
- Structured logging setup and a ``captured_logs`` fixture
- Deterministic clock, tenant and actor helpers
- In-memory and SQLite-backed proposal repositories
- A ProposalService wired to a synchronous recording publisher

Persistence tests run on an in-memory SQLite database, created fresh for
every test that asks for ``session_factory``.
"""

import json
import logging
import threading
from dataclasses import replace
from datetime import date
from io import StringIO
from uuid import UUID, uuid4

import pytest

from grants_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from grants_kernel.domain.clock import DeterministicClock
from grants_kernel.domain.events import DomainEvent
from grants_kernel.domain.proposal import ActorContext, Proposal
from grants_kernel.domain.proposal_workflow import ProposalState, ProposalTransition
from grants_kernel.domain.state_metadata import STATE_METADATA, get_state_metadata
from grants_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from grants_kernel.services.proposal_repository import (
    InMemoryProposalRepository,
    SqlAlchemyProposalRepository,
)
from grants_services.proposal_service import CreateProposalInput, ProposalService

# Every role named anywhere in the metadata registry.
ALL_ROLES: frozenset[str] = frozenset(
    role for meta in STATE_METADATA.values() for role in meta.required_roles
)

_S = ProposalState
_T = ProposalTransition

# Draft to Closed along the main happy path.
HAPPY_PATH: tuple[tuple[ProposalTransition, ProposalState], ...] = (
    (_T.START, _S.IN_PROGRESS),
    (_T.SUBMIT_FOR_REVIEW, _S.INTERNAL_REVIEW),
    (_T.ADVANCE_REVIEW, _S.DEPT_REVIEW),
    (_T.ADVANCE_REVIEW, _S.OSP_REVIEW),
    (_T.ADVANCE_REVIEW, _S.COMPLIANCE),
    (_T.ADVANCE_REVIEW, _S.BUDGET_REVIEW),
    (_T.ADVANCE_REVIEW, _S.PENDING_APPROVAL),
    (_T.APPROVE, _S.APPROVED),
    (_T.SUBMIT_TO_SPONSOR, _S.READY_TO_SUBMIT),
    (_T.SUBMIT_TO_SPONSOR, _S.SUBMITTED),
    (_T.ADVANCE_REVIEW, _S.UNDER_REVIEW),
    (_T.AWARD, _S.AWARDED),
    (_T.ACTIVATE, _S.ACTIVE),
    (_T.CLOSEOUT, _S.CLOSEOUT),
    (_T.CLOSE, _S.CLOSED),
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture grants_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.create_proposal(...)
            logs = captured_logs()
            assert any(r["message"] == "proposal_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("grants_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Time, tenants and actors
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def pi_id() -> UUID:
    return uuid4()


@pytest.fixture
def make_actor(tenant_id):
    """Build an ActorContext in the test tenant with the given roles."""

    def _make(*roles: str, actor_id: UUID | None = None) -> ActorContext:
        return ActorContext(
            tenant_id=tenant_id,
            actor_id=actor_id or uuid4(),
            roles=frozenset(roles),
        )

    return _make


@pytest.fixture
def pi_actor(make_actor, pi_id) -> ActorContext:
    return make_actor("PI", actor_id=pi_id)


@pytest.fixture
def superuser(make_actor) -> ActorContext:
    """Actor holding every role in the registry."""
    return make_actor(*ALL_ROLES)


@pytest.fixture
def staffed_registry(monkeypatch):
    """Give every unregistered state to GRANTS_ADMIN for one test.

    The shipped registry leaves Ready to Submit, Under Sponsor Review,
    Closeout and others without roles, so nobody can move a proposal out
    of them.  Tests that walk the whole lifecycle staff those gaps the way
    a deployment would.
    """

    def _lookup(state):
        metadata = get_state_metadata(state)
        if metadata.has_role_policy:
            return metadata
        return replace(metadata, required_roles=frozenset({"GRANTS_ADMIN"}))

    monkeypatch.setattr("grants_kernel.domain.proposal.get_state_metadata", _lookup)
    return _lookup


@pytest.fixture
def draft_proposal(tenant_id, pi_id, clock) -> Proposal:
    return Proposal.create(
        tenant_id=tenant_id,
        created_by=pi_id,
        title="Coastal Sediment Transport Under Storm Surge",
        owner_id=pi_id,
        sponsor_id=uuid4(),
        department="Civil Engineering",
        project_start=date(2024, 7, 1),
        project_end=date(2027, 6, 30),
        clock=clock,
    )


# =============================================================================
# Repositories and services
# =============================================================================


class RecordingPublisher:
    """Synchronous publisher that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: str) -> list[DomainEvent]:
        return [e for e in self.events if e.event_type == event_type]


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def memory_repository() -> InMemoryProposalRepository:
    return InMemoryProposalRepository()


@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite schema for one test."""
    init_engine_from_url("sqlite://")
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


@pytest.fixture
def sql_repository(session_factory) -> SqlAlchemyProposalRepository:
    return SqlAlchemyProposalRepository(session_factory)


@pytest.fixture(params=["memory", "sqlalchemy"])
def repository(request):
    """Each repository adapter in turn."""
    if request.param == "memory":
        return InMemoryProposalRepository()
    return request.getfixturevalue("sql_repository")


@pytest.fixture
def service(memory_repository, publisher, clock) -> ProposalService:
    return ProposalService(memory_repository, publisher=publisher, clock=clock)


@pytest.fixture
def create_input(pi_id):
    """Factory for valid CreateProposalInput values."""

    def _make(**overrides) -> CreateProposalInput:
        fields = {
            "title": "Soil Microbiome Resilience in Drought",
            "owner_id": pi_id,
            "sponsor_id": uuid4(),
            "department": "Biology",
            "project_start": date(2024, 9, 1),
            "project_end": date(2026, 8, 31),
        }
        fields.update(overrides)
        return CreateProposalInput(**fields)

    return _make


@pytest.fixture
def happy_path() -> tuple[tuple[ProposalTransition, ProposalState], ...]:
    """``(transition, expected_state)`` steps from Draft to Closed."""
    return HAPPY_PATH


@pytest.fixture
def all_roles() -> frozenset[str]:
    return ALL_ROLES
