"""
Tests for grants_kernel/logging_config.py.

Each test gets a clean logging setup and writes through a private
StringIO handler, so records can be read back as JSON.
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest

from grants_kernel.domain.proposal import ActorContext
from grants_kernel.domain.proposal_workflow import ProposalState, ProposalTransition
from grants_kernel.exceptions import NotEditableError, VersionConflictError
from grants_kernel.logging_config import (
    CONTEXT_FIELDS,
    LogContext,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _isolated_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


@pytest.fixture
def log_lines():
    """Configure logging into a buffer; return a reader of parsed lines."""
    stream = StringIO()
    configure_logging(stream=stream, level="debug")

    def _read() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    return _read


@pytest.fixture
def actor():
    return ActorContext(tenant_id=uuid4(), actor_id=uuid4(), roles=frozenset({"PI"}))


class TestRecordShape:
    def test_envelope(self, log_lines):
        get_logger("services.proposal_service").info("proposal_created")

        (line,) = log_lines()
        assert line["message"] == "proposal_created"
        assert line["level"] == "INFO"
        assert line["logger"] == "grants_kernel.services.proposal_service"
        assert datetime.fromisoformat(line["ts"]).tzinfo is not None

    def test_extras_are_top_level_fields(self, log_lines):
        get_logger("test").info(
            "proposal_transitioned",
            extra={"from_state": "DRAFT", "to_state": "IN_PROGRESS", "version": 2},
        )

        (line,) = log_lines()
        assert (line["from_state"], line["to_state"], line["version"]) == (
            "DRAFT", "IN_PROGRESS", 2,
        )

    def test_domain_values_serialized(self, log_lines):
        owner = uuid4()
        deadline = datetime(2025, 3, 1, 17, 0, tzinfo=timezone.utc)
        get_logger("test").info(
            "values",
            extra={
                "owner_id": owner,
                "state": ProposalState.UNDER_REVIEW,
                "transition": ProposalTransition.AWARD,
                "notify_roles": frozenset({"PI", "OSP_OFFICER"}),
                "sponsor_deadline": deadline,
            },
        )

        (line,) = log_lines()
        assert line["owner_id"] == str(owner)
        assert line["state"] == "UNDER_SPONSOR_REVIEW"
        assert line["transition"] == "AWARD"
        assert line["notify_roles"] == ["OSP_OFFICER", "PI"]
        assert line["sponsor_deadline"] == "2025-03-01T17:00:00+00:00"

    def test_debug_filtered_at_info(self):
        stream = StringIO()
        configure_logging(stream=stream)
        logger = get_logger("test")
        logger.debug("noise")
        logger.info("kept")

        assert [json.loads(x)["message"] for x in stream.getvalue().splitlines()] == ["kept"]


class TestExceptionFields:
    def test_not_editable(self, log_lines):
        proposal_id = uuid4()
        try:
            raise NotEditableError(proposal_id, ProposalState.SUBMITTED)
        except NotEditableError:
            get_logger("test").warning("edit_rejected", exc_info=True)

        (line,) = log_lines()
        assert line["exc_type"] == "NotEditableError"
        assert line["exc_code"] == "NOT_EDITABLE"
        assert line["exc_proposal_id"] == str(proposal_id)
        assert line["exc_state"] == "SUBMITTED"
        assert "NotEditableError" in line["traceback"]

    def test_revision_conflict(self, log_lines):
        try:
            raise VersionConflictError(
                "Proposal", uuid4(), 1, 1, expected_revision=1, actual_revision=2
            )
        except VersionConflictError:
            get_logger("test").info("save_lost", exc_info=True)

        (line,) = log_lines()
        assert line["exc_code"] == "VERSION_CONFLICT"
        assert line["exc_expected_revision"] == 1
        assert line["exc_actual_revision"] == 2
        assert line["exc_message"].endswith("(revision 1, stored 2)")

    def test_plain_exception_has_no_code(self, log_lines):
        try:
            raise KeyError("sponsor")
        except KeyError:
            get_logger("test").error("lookup_failed", exc_info=True)

        (line,) = log_lines()
        assert line["exc_type"] == "KeyError"
        assert "exc_code" not in line


class TestLogContext:
    def test_set_merges(self):
        LogContext.set(correlation_id="req-1")
        LogContext.set(trace_id="t-9", tenant_id=None)
        assert LogContext.get_all() == {"correlation_id": "req-1", "trace_id": "t-9"}

    def test_set_rejects_unknown_field(self):
        with pytest.raises(TypeError, match="sponsor_id"):
            LogContext.set(sponsor_id="x")

    def test_bind_nests_and_restores(self):
        proposal_a, proposal_b = uuid4(), uuid4()
        with LogContext.bind(proposal_id=proposal_a):
            with LogContext.bind(proposal_id=proposal_b, correlation_id="c"):
                assert LogContext.get_all() == {
                    "proposal_id": str(proposal_b), "correlation_id": "c",
                }
            assert LogContext.get_all() == {"proposal_id": str(proposal_a)}
        assert LogContext.get_all() == {}

    def test_bind_restores_after_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(correlation_id="doomed"):
                raise RuntimeError
        assert LogContext.get_all() == {}

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(correlation_id="c", not_a_field="x"):
            assert LogContext.get_all() == {"correlation_id": "c"}

    def test_for_actor(self, actor):
        proposal_id = uuid4()
        with LogContext.for_actor(actor, proposal_id):
            assert LogContext.get_all() == {
                "tenant_id": str(actor.tenant_id),
                "actor_id": str(actor.actor_id),
                "proposal_id": str(proposal_id),
            }

    def test_for_actor_without_proposal(self, actor):
        with LogContext.for_actor(actor):
            assert "proposal_id" not in LogContext.get_all()

    def test_context_fields_reach_records(self, log_lines, actor):
        with LogContext.for_actor(actor, uuid4()):
            get_logger("test").info("inside", extra={"tenant_id": "spoofed"})
        get_logger("test").info("outside")

        inside, outside = log_lines()
        assert inside["tenant_id"] == str(actor.tenant_id)
        assert not set(CONTEXT_FIELDS) & set(outside)


class TestConfigureLogging:
    def test_first_call_wins(self):
        first, second = StringIO(), StringIO()
        configure_logging(stream=first)
        configure_logging(stream=second, level=logging.DEBUG)

        get_logger("test").info("once")
        root = logging.getLogger("grants_kernel")
        assert len(root.handlers) == 1
        assert root.level == logging.INFO
        assert second.getvalue() == ""

    def test_does_not_propagate(self):
        configure_logging(stream=StringIO())
        assert logging.getLogger("grants_kernel").propagate is False


def test_service_operations_carry_actor_context(service, pi_actor, create_input, captured_logs):
    proposal = service.create_proposal(pi_actor, create_input())
    service.transition_proposal(pi_actor, proposal.id, ProposalTransition.START)

    (line,) = [r for r in captured_logs() if r["message"] == "proposal_transitioned"]
    assert line["tenant_id"] == str(pi_actor.tenant_id)
    assert line["actor_id"] == str(pi_actor.actor_id)
    assert line["proposal_id"] == str(proposal.id)
    assert line["to_state"] == "IN_PROGRESS"
