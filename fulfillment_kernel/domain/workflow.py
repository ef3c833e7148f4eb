"""
Canonical workflow types (``fulfillment_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for lifecycle state machines.  Orders, work tasks,
pick bins and allocations each declare one ``Workflow``; the legal
transition table is data, and every query over it is a pure function.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``repositories/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states are exactly the states with no outgoing transition.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from fulfillment_kernel.exceptions import InvalidTransitionError

S = TypeVar("S", bound=Enum)


@dataclass(frozen=True)
class Transition(Generic[S]):
    """A legal state transition, labelled with the action that performs it."""

    from_state: S
    to_state: S
    action: str


@dataclass(frozen=True)
class Workflow(Generic[S]):
    """A state machine definition for one entity lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    Guarantees: ``initial_state`` is a member of ``states``.
    """

    name: str
    initial_state: S
    states: tuple[S, ...]
    transitions: tuple[Transition[S], ...]

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"{self.name}: initial state {self.initial_state} not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"{self.name}: transition {t.from_state} -> {t.to_state} "
                    f"references an unknown state"
                )

    def legal_next_states(self, state: S) -> frozenset[S]:
        """States reachable from *state* in one transition."""
        return frozenset(t.to_state for t in self.transitions if t.from_state == state)

    def can_transition(self, from_state: S, to_state: S) -> bool:
        return to_state in self.legal_next_states(from_state)

    def assert_transition(self, from_state: S, to_state: S) -> None:
        """Raise InvalidTransitionError naming both states if illegal."""
        if not self.can_transition(from_state, to_state):
            raise InvalidTransitionError(self.name, from_state, to_state)

    def is_terminal(self, state: S) -> bool:
        return not self.legal_next_states(state)

    def action_for(self, from_state: S, to_state: S) -> str | None:
        """Name of the action that moves *from_state* to *to_state*."""
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t.action
        return None

    @property
    def terminal_states(self) -> frozenset[S]:
        return frozenset(s for s in self.states if self.is_terminal(s))
