"""
Declarative workflow types (``grants_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects that describe a state machine as data: the states, the
initial state, every edge and the terminal states.  A ``Workflow`` is
materialised into a running ``StateMachine`` by ``Workflow.build()``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* ``terminal_states`` have no outgoing transitions.
"""

from __future__ import annotations

from collections.abc import Hashable
from dataclasses import dataclass

from grants_kernel.domain.state_machine import StateMachine


@dataclass(frozen=True)
class Transition:
    """One edge of a workflow: ``action`` moves ``from_state`` to ``to_state``."""

    from_state: Hashable
    to_state: Hashable
    action: Hashable


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; validated at construction.
    """

    name: str
    description: str
    initial_state: Hashable
    states: tuple[Hashable, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[Hashable, ...] = ()

    def __post_init__(self) -> None:
        known = set(self.states)
        if self.initial_state not in known:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} not in states"
            )
        for t in self.transitions:
            if t.from_state not in known or t.to_state not in known:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action!r} "
                    f"{t.from_state!r} -> {t.to_state!r} references an unknown state"
                )
        sources = {t.from_state for t in self.transitions}
        for state in self.terminal_states:
            if state in sources:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {state!r} has outgoing transitions"
                )

    def build(self) -> StateMachine:
        """Register every edge, in declaration order, into a new machine."""
        machine: StateMachine = StateMachine(self.initial_state)
        machine.add_transitions(
            (t.from_state, t.action, t.to_state) for t in self.transitions
        )
        return machine
