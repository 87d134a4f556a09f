"""
Concurrent use of a shared StateMachine.

Many threads query the proposal machine while others register edges or
execute transitions.  Readers must never observe a torn table, and a guard
that calls back into the machine must fail fast instead of deadlocking.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier, Lock

import pytest

from grants_kernel.domain.proposal_workflow import (
    PROPOSAL_TRANSITIONS,
    ProposalState,
    ProposalTransition,
    build_proposal_state_machine,
    get_proposal_state_machine,
)
from grants_kernel.domain.state_machine import StateMachine
from grants_kernel.exceptions import StateMachineReentryError

S = ProposalState
T = ProposalTransition

THREADS = 16


def test_parallel_readers_agree():
    machine = get_proposal_state_machine()
    expected = {
        state: machine.get_available_transitions(state) for state in ProposalState
    }
    barrier = Barrier(THREADS)

    def read_all(_):
        barrier.wait()
        return {
            state: machine.get_available_transitions(state)
            for _ in range(50)
            for state in ProposalState
        }

    with ThreadPoolExecutor(max_workers=THREADS) as pool:
        results = list(pool.map(read_all, range(THREADS)))

    assert all(result == expected for result in results)


def test_writers_and_readers_interleave():
    """Edges registered concurrently all land; readers see whole edges only."""
    machine: StateMachine[str, str] = StateMachine("s0")
    barrier = Barrier(THREADS)
    errors = []
    errors_lock = Lock()

    def work(worker):
        barrier.wait()
        for i in range(100):
            if worker % 2:
                machine.add_transition(f"w{worker}", f"t{i}", f"w{worker}-{i}")
            else:
                for info in machine.get_all_transitions():
                    if info.to_state != f"{info.from_state}-{info.transition[1:]}":
                        with errors_lock:
                            errors.append(info)

    with ThreadPoolExecutor(max_workers=THREADS) as pool:
        list(pool.map(work, range(THREADS)))

    assert errors == []
    assert len(machine.get_all_transitions()) == (THREADS // 2) * 100


def test_concurrent_execution_runs_callbacks_serially():
    machine = build_proposal_state_machine()
    active = []
    overlaps = []
    entered = []
    lock = Lock()

    def on_enter(from_state):
        with lock:
            if active:
                overlaps.append(from_state)
            active.append(from_state)
        with lock:
            entered.append(from_state)
            active.remove(from_state)

    machine.on_enter(S.IN_PROGRESS, on_enter)
    barrier = Barrier(THREADS)

    def run(_):
        barrier.wait()
        return machine.execute_transition(S.DRAFT, T.START)

    with ThreadPoolExecutor(max_workers=THREADS) as pool:
        results = list(pool.map(run, range(THREADS)))

    assert results == [S.IN_PROGRESS] * THREADS
    assert overlaps == []
    assert entered == [S.DRAFT] * THREADS


def test_guard_reentry_fails_fast():
    machine = build_proposal_state_machine()
    machine.add_guard(
        T.START,
        lambda from_state, to_state: machine.can_transition(to_state, T.SUBMIT_FOR_REVIEW),
    )

    with pytest.raises(StateMachineReentryError):
        machine.get_next_state(S.DRAFT, T.START)
    with pytest.raises(StateMachineReentryError):
        machine.execute_transition(S.DRAFT, T.START)

    # The lock is released after the failure.
    assert machine.can_transition(S.IN_PROGRESS, T.SUBMIT_FOR_REVIEW)


def test_callback_registering_edge_fails_fast():
    machine = build_proposal_state_machine()
    machine.on_exit(
        S.DRAFT, lambda to_state: machine.add_transition(S.DRAFT, T.CLOSE, S.CLOSED)
    )

    with pytest.raises(StateMachineReentryError):
        machine.execute_transition(S.DRAFT, T.START)
    assert len(machine.get_all_transitions()) == len(PROPOSAL_TRANSITIONS)
