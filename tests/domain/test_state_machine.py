"""Tests for the generic StateMachine (grants_kernel/domain/state_machine.py)."""

import pytest

from grants_kernel.domain.state_machine import StateMachine, TransitionInfo
from grants_kernel.exceptions import InvalidTransitionError, StateMachineReentryError


@pytest.fixture
def door() -> StateMachine[str, str]:
    machine: StateMachine[str, str] = StateMachine("closed")
    machine.add_transitions([
        ("closed", "open", "opened"),
        ("opened", "close", "closed"),
        ("closed", "lock", "locked"),
        ("locked", "unlock", "closed"),
    ])
    return machine


class TestResolution:
    def test_initial_state(self, door):
        assert door.initial_state == "closed"

    def test_get_next_state(self, door):
        assert door.get_next_state("closed", "open") == "opened"
        assert door.get_next_state("locked", "unlock") == "closed"

    def test_missing_edge_raises(self, door):
        with pytest.raises(InvalidTransitionError) as exc_info:
            door.get_next_state("locked", "open")
        assert exc_info.value.code == "INVALID_TRANSITION"
        assert exc_info.value.from_state == "locked"
        assert exc_info.value.transition == "open"

    def test_unknown_state_has_no_transitions(self, door):
        assert door.get_available_transitions("ajar") == frozenset()
        assert not door.can_transition("ajar", "open")

    def test_available_transitions(self, door):
        assert door.get_available_transitions("closed") == frozenset({"open", "lock"})

    def test_last_write_wins_on_duplicate_key(self, door):
        door.add_transition("closed", "open", "locked")
        assert door.get_next_state("closed", "open") == "locked"
        assert len([t for t in door.get_all_transitions() if t.transition == "open"]) == 1


class TestIntrospection:
    def test_all_states_include_targets_only(self):
        machine: StateMachine[str, str] = StateMachine("a")
        machine.add_transition("a", "go", "b")
        assert machine.get_all_states() == frozenset({"a", "b"})

    def test_all_transitions_grouped_by_source(self, door):
        assert door.get_all_transitions() == (
            TransitionInfo("closed", "open", "opened"),
            TransitionInfo("closed", "lock", "locked"),
            TransitionInfo("opened", "close", "closed"),
            TransitionInfo("locked", "unlock", "closed"),
        )


class TestGuards:
    def test_guard_veto_hides_transition(self, door):
        door.add_guard("lock", lambda from_state, to_state: False)

        assert not door.can_transition("closed", "lock")
        assert "lock" not in door.get_available_transitions("closed")
        with pytest.raises(InvalidTransitionError, match="rejected by guard"):
            door.get_next_state("closed", "lock")

    def test_guard_receives_edge(self, door):
        seen = []

        def record(from_state, to_state):
            seen.append((from_state, to_state))
            return True

        door.add_guard("open", record)
        door.get_next_state("closed", "open")
        assert seen == [("closed", "opened")]

    def test_guard_applies_to_every_edge_with_symbol(self):
        machine: StateMachine[str, str] = StateMachine("a")
        machine.add_transitions([("a", "next", "b"), ("b", "next", "c")])
        machine.add_guard("next", lambda from_state, to_state: from_state != "b")

        assert machine.can_transition("a", "next")
        assert not machine.can_transition("b", "next")

    def test_all_guards_must_pass(self, door):
        door.add_guard("open", lambda f, t: True)
        door.add_guard("open", lambda f, t: False)
        assert not door.can_transition("closed", "open")


class TestExecution:
    def test_exit_then_enter_callbacks(self, door):
        calls = []
        door.on_exit("closed", lambda to_state: calls.append(("exit closed", to_state)))
        door.on_enter("opened", lambda from_state: calls.append(("enter opened", from_state)))

        assert door.execute_transition("closed", "open") == "opened"
        assert calls == [("exit closed", "opened"), ("enter opened", "closed")]

    def test_invalid_execution_runs_no_callbacks(self, door):
        calls = []
        door.on_exit("locked", lambda to_state: calls.append(to_state))

        with pytest.raises(InvalidTransitionError):
            door.execute_transition("locked", "open")
        assert calls == []

    def test_reentrant_guard_raises_instead_of_deadlocking(self, door):
        door.add_guard("open", lambda f, t: door.can_transition("opened", "close"))

        with pytest.raises(StateMachineReentryError) as exc_info:
            door.get_next_state("closed", "open")
        assert exc_info.value.code == "STATE_MACHINE_REENTRY"

    def test_reentrant_callback_raises(self, door):
        door.on_enter("opened", lambda from_state: door.get_next_state("opened", "close"))

        with pytest.raises(StateMachineReentryError):
            door.execute_transition("closed", "open")

    def test_machine_usable_after_reentry_error(self, door):
        door.on_enter("locked", lambda from_state: door.add_transition("x", "y", "z"))
        with pytest.raises(StateMachineReentryError):
            door.execute_transition("closed", "lock")

        assert door.get_next_state("closed", "open") == "opened"


class TestClone:
    def test_clone_copies_topology(self, door):
        copy = door.clone()
        assert copy.get_all_transitions() == door.get_all_transitions()
        assert copy.initial_state == door.initial_state

    def test_clone_drops_guards_and_is_independent(self, door):
        door.add_guard("open", lambda f, t: False)
        copy = door.clone()

        assert copy.can_transition("closed", "open")
        copy.add_transition("opened", "slam", "closed")
        assert not door.can_transition("opened", "slam")
