"""
Compensating transaction runner.

A workflow that spans several external stores is written as an ordered
list of steps. Each step may carry a compensation that undoes it. When a
step fails, the compensations of the steps already completed run in
reverse order and the original error is raised again. Steps without a
compensation stay applied.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from cassa.exceptions import CompensationFailure

logger = logging.getLogger(__name__)


@dataclass
class SagaStep:
    name: str
    forward: Callable[[], Any]
    compensate: Optional[Callable[[], Any]] = None


@dataclass
class StepFailure:
    """A compensation that raised during rollback."""
    step: str
    error: Exception

    def __str__(self):
        return f"{self.step}: {self.error}"


@dataclass
class Saga:
    """
    Ordered steps executed one at a time.

    Usage:
        saga = Saga('cancel_reservation')
        saga.add_step('status', lambda: backend.update_order_status(...))
        saga.add_step('stock_add:42', add, compensate=subtract)
        saga.run()
    """
    name: str
    steps: List[SagaStep] = field(default_factory=list)
    completed: List[SagaStep] = field(default_factory=list)

    def add_step(self, name: str, forward: Callable[[], Any],
                 compensate: Optional[Callable[[], Any]] = None) -> 'Saga':
        self.steps.append(SagaStep(name, forward, compensate))
        return self

    def run(self) -> List[Any]:
        """
        Execute every step in order.

        Returns:
            Results of the forward calls, in step order

        Raises:
            Exception: The failing step's error, after a clean rollback
            CompensationFailure: If any compensation failed while rolling back
        """
        results = []
        for step in self.steps:
            try:
                results.append(step.forward())
            except Exception as e:
                logger.error(f"[SAGA] {self.name}: step {step.name} failed: {e}")
                failures = self._rollback()
                if failures:
                    logger.critical(
                        f"[SAGA] {self.name}: rollback incomplete, manual reconciliation needed: "
                        f"{', '.join(str(f) for f in failures)}"
                    )
                    raise CompensationFailure(e, failures) from e
                raise
            self.completed.append(step)
            logger.debug(f"[SAGA] {self.name}: step {step.name} done")

        logger.info(f"[SAGA] {self.name}: {len(self.completed)} step(s) completed")
        return results

    def _rollback(self) -> List[StepFailure]:
        """Run compensations in reverse order; every one is attempted."""
        failures = []
        for step in reversed(self.completed):
            if step.compensate is None:
                continue
            try:
                step.compensate()
                logger.info(f"[SAGA] {self.name}: compensated {step.name}")
            except Exception as e:
                logger.error(f"[SAGA] {self.name}: compensation of {step.name} failed: {e}")
                failures.append(StepFailure(step.name, e))
        return failures
