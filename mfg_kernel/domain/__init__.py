"""Pure kernel domain types: clock and workflow definitions."""

from mfg_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from mfg_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "Guard",
    "Transition",
    "Workflow",
]
