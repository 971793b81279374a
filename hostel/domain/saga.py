"""Minimal in-process saga runner.

A saga is an ordered list of steps, each pairing an action with an optional
compensation. Steps run in order; when one raises, the compensations of every
step that already committed are executed in LIFO order and the original error
is re-raised. A compensation that itself fails is logged and recorded in
``failed_compensations`` so an operator can repair the orphan by hand.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from hostel.utils.logger import get_logger


logger = get_logger(__name__)

SagaContext = dict[str, Any]


@dataclass(frozen=True)
class SagaStep:
    name: str
    action: Callable[[SagaContext], Any]
    compensation: Optional[Callable[[SagaContext], None]] = None


@dataclass
class SagaRun:
    context: SagaContext
    completed_steps: list[str] = field(default_factory=list)
    compensated_steps: list[str] = field(default_factory=list)
    failed_compensations: list[str] = field(default_factory=list)


class Saga:
    """Execute steps with structurally guaranteed reverse-order compensation."""

    def __init__(self, name: str, steps: Optional[list[SagaStep]] = None) -> None:
        self.name = name
        self._steps: list[SagaStep] = list(steps or [])

    def add_step(
        self,
        name: str,
        action: Callable[[SagaContext], Any],
        compensation: Optional[Callable[[SagaContext], None]] = None,
    ) -> "Saga":
        self._steps.append(SagaStep(name=name, action=action, compensation=compensation))
        return self

    @property
    def steps(self) -> list[SagaStep]:
        return list(self._steps)

    def run(self, context: Optional[SagaContext] = None) -> SagaRun:
        """Run every step; each action's return value is stored under its step name."""
        run = SagaRun(context=context if context is not None else {})
        committed: list[SagaStep] = []
        for step in self._steps:
            try:
                run.context[step.name] = step.action(run.context)
            except Exception:
                logger.warning(
                    "Saga %s failed at step '%s'; compensating %s committed step(s)",
                    self.name,
                    step.name,
                    len(committed),
                )
                self._compensate(committed, run)
                raise
            committed.append(step)
            run.completed_steps.append(step.name)
        return run

    def _compensate(self, committed: list[SagaStep], run: SagaRun) -> None:
        for step in reversed(committed):
            if step.compensation is None:
                continue
            try:
                step.compensation(run.context)
                run.compensated_steps.append(step.name)
            except Exception:
                logger.exception(
                    "Saga %s compensation for step '%s' failed; manual repair required",
                    self.name,
                    step.name,
                )
                run.failed_compensations.append(step.name)
