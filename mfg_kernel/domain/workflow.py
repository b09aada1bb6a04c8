"""
Canonical workflow types (``mfg_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the MO, PO and requirement state machines.  Each
module declares its ``Workflow`` once in ``workflows.py``; services ask the
workflow whether an action is legal from the current status instead of
scattering status comparisons.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

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
    """A named precondition documented on a transition.

    Non-goals: does not evaluate the condition -- the owning service does.
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


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action} "
                    f"{t.from_state}->{t.to_state} references unknown state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state!r} "
                    f"has outgoing transition {t.action}"
                )

    def find_transition(self, from_state: str, action: str) -> Transition | None:
        """Return the transition for ``action`` out of ``from_state``, if any."""
        for t in self.transitions:
            if t.from_state == from_state and t.action == action:
                return t
        return None

    def sources_for(self, action: str) -> tuple[str, ...]:
        """States from which ``action`` is permitted, in declaration order."""
        seen: list[str] = []
        for t in self.transitions:
            if t.action == action and t.from_state not in seen:
                seen.append(t.from_state)
        return tuple(seen)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states
