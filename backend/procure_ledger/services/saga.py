"""Compensating saga: run steps in order, undo completed ones in reverse on failure."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from procure_ledger.core.errors import ProcurementError

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]
Compensation = Callable[[Any], Awaitable[None]]


class SagaFailedError(ProcurementError):
    """A compensation failed and the saga was told to stop unwinding."""

    default_code = "SAGA_COMPENSATION_FAILED"

    def __init__(self, message: str, original_error: BaseException, failed_step: str):
        super().__init__(message, details={"failed_step": failed_step})
        self.original_error = original_error
        self.failed_step = failed_step


@dataclass
class SagaStep:
    name: str
    result: Any
    compensate: Compensation | None
    compensation_name: str | None = None


class CompensatingSaga:
    def __init__(
        self,
        name: str,
        stop_on_compensation_error: bool = False,
        compensation_timeout: float | None = None,
    ):
        self.name = name
        self.stop_on_compensation_error = stop_on_compensation_error
        self.compensation_timeout = compensation_timeout
        self._steps: list[SagaStep] = []
        self.compensation_errors: list[tuple[str, Exception]] = []

    @property
    def completed_steps(self) -> list[SagaStep]:
        return list(self._steps)

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self._steps]

    async def execute(
        self,
        name: str,
        action: Action,
        compensate: Compensation | None = None,
        compensation_name: str | None = None,
    ) -> Any:
        """Run one step. On failure, compensate everything done so far and re-raise."""
        try:
            result = await action()
        except Exception as exc:
            logger.warning("Saga %s: step %s failed: %s", self.name, name, exc)
            await self._compensate(exc)
            raise
        self._steps.append(SagaStep(name, result, compensate, compensation_name or f"undo {name}"))
        return result

    async def _compensate(self, original_error: Exception) -> None:
        steps, self._steps = self._steps, []
        for step in reversed(steps):
            if step.compensate is None:
                continue
            try:
                if self.compensation_timeout is not None:
                    await asyncio.wait_for(step.compensate(step.result), self.compensation_timeout)
                else:
                    await step.compensate(step.result)
                logger.info("Saga %s: compensated %s", self.name, step.compensation_name)
            except Exception as comp_exc:
                logger.error(
                    "Saga %s: compensation %s failed", self.name, step.compensation_name, exc_info=True
                )
                self.compensation_errors.append((step.name, comp_exc))
                if self.stop_on_compensation_error:
                    raise SagaFailedError(
                        f"Saga {self.name} stopped: compensation for {step.name} failed "
                        f"after: {original_error}",
                        original_error=original_error,
                        failed_step=step.name,
                    ) from comp_exc
