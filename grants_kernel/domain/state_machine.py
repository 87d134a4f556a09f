"""
Generic state machine (``grants_kernel.domain.state_machine``).

Responsibility
--------------
A directed graph of ``(state, transition) -> state`` edges with guard
predicates and enter/exit hooks.  Knows nothing about proposals: states and
transitions are any hashable symbols (the proposal workflow uses ``str``
enums).

Architecture position
---------------------
**Kernel domain layer**.  ZERO I/O.  The only shared mutable state is the
transition table, guarded by a reader/writer lock.

Invariants enforced
-------------------
* At most one target per ``(state, transition)`` key.  Re-registering a key
  replaces the previous target (last write wins).
* ``can_transition``, ``get_next_state`` and ``get_available_transitions``
  resolve through the same private lookup, so a listed transition is always
  executable and vice versa.
* Guards are keyed by transition symbol, not by edge.  Every guard for a
  symbol must pass on every edge that uses the symbol.
* ``clone`` copies topology only.  Guards and callbacks close over
  caller state and are never shared between machines.

Concurrency
-----------
Reads (``can_transition``, ``get_next_state``, ``get_available_transitions``,
introspection) share the lock.  Writes (``add_transition``, ``add_guard``,
``on_enter``, ``on_exit``) and ``execute_transition`` hold it exclusively.
Registration is meant to finish once, before request traffic starts.

Guards and enter/exit callbacks run while the lock is held.  They must be
fast, must not block, and must not call back into the same machine.  A
re-entrant call from the lock-holding thread raises
``StateMachineReentryError`` instead of deadlocking.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Hashable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generic, TypeVar

from grants_kernel.exceptions import InvalidTransitionError, StateMachineReentryError

S = TypeVar("S", bound=Hashable)
T = TypeVar("T", bound=Hashable)

Guard = Callable[[S, S], bool]
EnterCallback = Callable[[S], None]
ExitCallback = Callable[[S], None]


@dataclass(frozen=True)
class TransitionInfo(Generic[S, T]):
    """One registered edge, as returned by ``get_all_transitions``."""

    from_state: S
    transition: T
    to_state: S


class _ReadWriteLock:
    """Writer-preferring reader/writer lock that rejects re-entry.

    Tracks which threads currently hold the lock so that a guard or callback
    calling back into the machine fails fast rather than deadlocking.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers: dict[int, int] = {}
        self._writer: int | None = None
        self._writers_waiting = 0

    def _check_reentry(self, me: int, operation: str) -> None:
        if self._writer == me or me in self._readers:
            raise StateMachineReentryError(operation)

    @contextmanager
    def read(self, operation: str) -> Iterator[None]:
        me = threading.get_ident()
        with self._cond:
            self._check_reentry(me, operation)
            while self._writer is not None or self._writers_waiting:
                self._cond.wait()
            self._readers[me] = self._readers.get(me, 0) + 1
        try:
            yield
        finally:
            with self._cond:
                self._readers[me] -= 1
                if not self._readers[me]:
                    del self._readers[me]
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self, operation: str) -> Iterator[None]:
        me = threading.get_ident()
        with self._cond:
            self._check_reentry(me, operation)
            self._writers_waiting += 1
            try:
                while self._writer is not None or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = me
        try:
            yield
        finally:
            with self._cond:
                self._writer = None
                self._cond.notify_all()


class StateMachine(Generic[S, T]):
    """Concurrency-safe transition table with guards and hooks.

    Contract:
        Construct, register edges/guards/hooks, then share freely between
        threads for reads and ``execute_transition``.
    Non-goals:
        Does not hold a "current state".  Callers own their state and pass it
        in; the machine only answers where a transition leads.
    """

    def __init__(self, initial_state: S) -> None:
        self._initial_state = initial_state
        self._lock = _ReadWriteLock()
        self._transitions: dict[S, dict[T, S]] = {}
        self._guards: dict[T, list[Guard]] = {}
        self._on_enter: dict[S, list[EnterCallback]] = {}
        self._on_exit: dict[S, list[ExitCallback]] = {}

    @property
    def initial_state(self) -> S:
        return self._initial_state

    # ------------------------------------------------------------------
    # Registration (exclusive)
    # ------------------------------------------------------------------

    def add_transition(self, from_state: S, transition: T, to_state: S) -> None:
        """Register an edge.  An existing edge for the same key is replaced."""
        with self._lock.write("add_transition"):
            self._transitions.setdefault(from_state, {})[transition] = to_state

    def add_transitions(self, edges: Iterable[tuple[S, T, S]]) -> None:
        """Register several ``(from_state, transition, to_state)`` edges."""
        for from_state, transition, to_state in edges:
            self.add_transition(from_state, transition, to_state)

    def add_guard(self, transition: T, guard: Guard) -> None:
        """Attach a ``guard(from_state, to_state) -> bool`` to a transition symbol."""
        with self._lock.write("add_guard"):
            self._guards.setdefault(transition, []).append(guard)

    def on_enter(self, state: S, callback: EnterCallback) -> None:
        """Register ``callback(from_state)`` to run when ``state`` is entered."""
        with self._lock.write("on_enter"):
            self._on_enter.setdefault(state, []).append(callback)

    def on_exit(self, state: S, callback: ExitCallback) -> None:
        """Register ``callback(to_state)`` to run when ``state`` is left."""
        with self._lock.write("on_exit"):
            self._on_exit.setdefault(state, []).append(callback)

    # ------------------------------------------------------------------
    # Resolution (caller holds the lock)
    # ------------------------------------------------------------------

    def _resolve(self, from_state: S, transition: T) -> S | None:
        """Target state if the edge exists and all guards pass, else None."""
        to_state = self._transitions.get(from_state, {}).get(transition)
        if to_state is None:
            return None
        for guard in self._guards.get(transition, ()):
            if not guard(from_state, to_state):
                return None
        return to_state

    def _resolve_or_raise(self, from_state: S, transition: T) -> S:
        to_state = self._resolve(from_state, transition)
        if to_state is None:
            if transition in self._transitions.get(from_state, {}):
                raise InvalidTransitionError(from_state, transition, "rejected by guard")
            raise InvalidTransitionError(from_state, transition)
        return to_state

    # ------------------------------------------------------------------
    # Queries (shared)
    # ------------------------------------------------------------------

    def can_transition(self, from_state: S, transition: T) -> bool:
        """True iff the edge exists and every guard for ``transition`` passes."""
        with self._lock.read("can_transition"):
            return self._resolve(from_state, transition) is not None

    def get_next_state(self, from_state: S, transition: T) -> S:
        """Resolve the target state.

        Raises:
            InvalidTransitionError: no edge for the key, or a guard rejected it.
        """
        with self._lock.read("get_next_state"):
            return self._resolve_or_raise(from_state, transition)

    def get_available_transitions(self, from_state: S) -> frozenset[T]:
        """All transitions for which ``can_transition(from_state, t)`` holds."""
        with self._lock.read("get_available_transitions"):
            return frozenset(
                transition
                for transition in self._transitions.get(from_state, {})
                if self._resolve(from_state, transition) is not None
            )

    def get_all_states(self) -> frozenset[S]:
        """Every state that appears as the source or target of an edge."""
        with self._lock.read("get_all_states"):
            states = set(self._transitions)
            for edges in self._transitions.values():
                states.update(edges.values())
            return frozenset(states)

    def get_all_transitions(self) -> tuple[TransitionInfo[S, T], ...]:
        """Every registered edge, grouped by source state in first-seen order."""
        with self._lock.read("get_all_transitions"):
            return tuple(
                TransitionInfo(from_state, transition, to_state)
                for from_state, edges in self._transitions.items()
                for transition, to_state in edges.items()
            )

    # ------------------------------------------------------------------
    # Execution (exclusive)
    # ------------------------------------------------------------------

    def execute_transition(self, current_state: S, transition: T) -> S:
        """Validate like ``get_next_state``, then run exit and enter callbacks.

        Exit callbacks of ``current_state`` run first (receiving the target),
        then enter callbacks of the target (receiving ``current_state``).
        Validation and callbacks happen inside one exclusive section.
        """
        with self._lock.write("execute_transition"):
            next_state = self._resolve_or_raise(current_state, transition)
            for callback in self._on_exit.get(current_state, ()):
                callback(next_state)
            for callback in self._on_enter.get(next_state, ()):
                callback(current_state)
            return next_state

    def clone(self) -> StateMachine[S, T]:
        """Copy the transition table.  Guards and callbacks are not copied."""
        with self._lock.read("clone"):
            edges = [
                (from_state, transition, to_state)
                for from_state, targets in self._transitions.items()
                for transition, to_state in targets.items()
            ]
        copy: StateMachine[S, T] = StateMachine(self._initial_state)
        copy.add_transitions(edges)
        return copy
