"""
Step Pipeline

Runs named async steps in declaration order. Each step lists the steps
whose results it consumes; if any of them did not succeed the step is
skipped. A failing step never stops the pipeline, so independent steps
still run.

A step may declare an expected error. Raising it is the step's success
condition (DENIED_AS_EXPECTED); returning normally is a fault
(UNEXPECTED_SUCCESS).
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type

logger = logging.getLogger(__name__)


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    DENIED_AS_EXPECTED = "denied_as_expected"
    UNEXPECTED_SUCCESS = "unexpected_success"

    @property
    def is_ok(self) -> bool:
        return self in (StepStatus.SUCCEEDED, StepStatus.DENIED_AS_EXPECTED)


StepAction = Callable[[Mapping[str, Any]], Awaitable[Any]]


@dataclass
class Step:
    name: str
    action: StepAction
    requires: Tuple[str, ...] = ()
    expect_error: Optional[Type[BaseException]] = None
    description: str = ""


@dataclass
class StepResult:
    name: str
    status: StepStatus
    value: Any = None
    error: Optional[BaseException] = None
    description: str = ""
    duration: float = 0.0
    # Requirements that had not succeeded, for skipped steps
    blocked_by: List[str] = field(default_factory=list)


@dataclass
class PipelineReport:
    name: str
    results: List[StepResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.status.is_ok for r in self.results)

    def get(self, name: str) -> Optional[StepResult]:
        for result in self.results:
            if result.name == name:
                return result
        return None

    def with_status(self, status: StepStatus) -> List[StepResult]:
        return [r for r in self.results if r.status == status]

    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in StepStatus}
        for result in self.results:
            counts[result.status.value] += 1
        return counts


class Pipeline:
    """
    Ordered pipeline of named steps.

    Usage:
        pipeline = Pipeline("demo")

        @pipeline.step("load")
        async def load(results):
            return read_payload()

        @pipeline.step("encrypt", requires=("load",))
        async def encrypt(results):
            return await gateway.encrypt(results["load"], policy)

        report = await pipeline.run()
    """

    def __init__(self, name: str):
        self.name = name
        self.steps: List[Step] = []

    def add(self, step: Step) -> Step:
        if any(s.name == step.name for s in self.steps):
            raise ValueError(f"Duplicate step name: {step.name}")
        unknown = [r for r in step.requires if not any(s.name == r for s in self.steps)]
        if unknown:
            raise ValueError(f"Step {step.name} requires undeclared steps: {', '.join(unknown)}")
        self.steps.append(step)
        return step

    def step(
        self,
        name: str,
        requires: Sequence[str] = (),
        expect_error: Optional[Type[BaseException]] = None,
        description: str = "",
    ) -> Callable[[StepAction], StepAction]:
        """Decorator form of add()"""
        def decorator(action: StepAction) -> StepAction:
            self.add(Step(name, action, tuple(requires), expect_error, description))
            return action
        return decorator

    async def run(self) -> PipelineReport:
        report = PipelineReport(name=self.name)
        values: Dict[str, Any] = {}
        statuses: Dict[str, StepStatus] = {}

        for index, step in enumerate(self.steps, start=1):
            label = f"[{index}/{len(self.steps)}] {step.description or step.name}"

            blocked = [r for r in step.requires if statuses.get(r) != StepStatus.SUCCEEDED]
            if blocked:
                logger.warning(f"{label}: skipped, requires {', '.join(blocked)}")
                result = StepResult(
                    step.name, StepStatus.SKIPPED, description=step.description, blocked_by=blocked
                )
            else:
                logger.info(label)
                result = await self._run_step(step, {r: values[r] for r in step.requires})

            statuses[step.name] = result.status
            if result.status == StepStatus.SUCCEEDED:
                values[step.name] = result.value
            report.results.append(result)

        counts = report.counts()
        logger.info(
            f"Pipeline {self.name} finished: "
            + ", ".join(f"{k}={v}" for k, v in counts.items() if v)
        )
        return report

    async def _run_step(self, step: Step, inputs: Mapping[str, Any]) -> StepResult:
        started = time.monotonic()
        try:
            value = await step.action(inputs)
        except Exception as e:
            duration = time.monotonic() - started
            if step.expect_error is not None and isinstance(e, step.expect_error):
                logger.info(f"  {step.name}: denied as expected ({type(e).__name__}: {e})")
                return StepResult(
                    step.name, StepStatus.DENIED_AS_EXPECTED, error=e,
                    description=step.description, duration=duration,
                )
            logger.error(f"  {step.name}: failed ({type(e).__name__}: {e})")
            logger.debug(f"  {step.name} traceback", exc_info=True)
            return StepResult(
                step.name, StepStatus.FAILED, error=e,
                description=step.description, duration=duration,
            )

        duration = time.monotonic() - started
        if step.expect_error is not None:
            logger.error(
                f"  {step.name}: expected {step.expect_error.__name__} but the step succeeded"
            )
            return StepResult(
                step.name, StepStatus.UNEXPECTED_SUCCESS, value=value,
                description=step.description, duration=duration,
            )

        logger.info(f"  {step.name}: ok ({duration:.2f}s)")
        return StepResult(
            step.name, StepStatus.SUCCEEDED, value=value,
            description=step.description, duration=duration,
        )
