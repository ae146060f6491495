"""
Canonical workflow types (``pharmacy_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for state machines.  A ``Workflow`` is a transition
table; the code that drives it evaluates guards and fires actions.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A named condition that must hold before a transition fires.

    Descriptive only; the driver evaluates it.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    writes_ledger: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition.

    Construction fails with ``ValueError`` when the table references an
    unknown state or a terminal state has outgoing transitions.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        known = set(self.states)
        if self.initial_state not in known:
            raise ValueError(f"{self.name}: initial state {self.initial_state!r} not in states")
        for t in self.transitions:
            if t.from_state not in known or t.to_state not in known:
                raise ValueError(f"{self.name}: transition {t.action!r} references unknown state")
            if t.from_state in self.terminal_states:
                raise ValueError(f"{self.name}: terminal state {t.from_state!r} has outgoing transition")
        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            key = (t.from_state, t.action)
            if key in seen:
                raise ValueError(f"{self.name}: duplicate action {t.action!r} from {t.from_state!r}")
            seen.add(key)

    def find(self, from_state: str, action: str) -> Transition | None:
        """Transition for ``action`` out of ``from_state``, if any."""
        for t in self.transitions:
            if t.from_state == from_state and t.action == action:
                return t
        return None

    def actions_from(self, state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == state)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states
