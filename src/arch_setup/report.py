from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional


class StepStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepResult:
    """Outcome of one named step."""

    name: str
    status: StepStatus
    message: str = ""

    @classmethod
    def ok(cls, name: str, message: str = "") -> "StepResult":
        return cls(name, StepStatus.SUCCESS, message)

    @classmethod
    def warn(cls, name: str, message: str) -> "StepResult":
        return cls(name, StepStatus.WARNING, message)

    @classmethod
    def failed(cls, name: str, message: str) -> "StepResult":
        return cls(name, StepStatus.FAILED, message)

    @classmethod
    def skipped(cls, name: str, message: str = "") -> "StepResult":
        return cls(name, StepStatus.SKIPPED, message)


@dataclass
class RunReport:
    """
    Ordered collection of step results.

    Failures are kept rather than discarded so the final status report shows
    every step that did not go as planned, while the run itself continues.
    """

    results: List[StepResult] = field(default_factory=list)

    def add(self, result: StepResult) -> StepResult:
        self.results.append(result)
        return result

    def extend(self, results: Iterable[StepResult], prefix: str = "") -> None:
        for result in results:
            name = f"{prefix}{result.name}" if prefix else result.name
            self.results.append(StepResult(name, result.status, result.message))

    @property
    def failures(self) -> List[StepResult]:
        return [r for r in self.results if r.status is StepStatus.FAILED]

    @property
    def ok(self) -> bool:
        return not self.failures

    def by_name(self) -> Dict[str, StepResult]:
        return {r.name: r for r in self.results}

    def get(self, name: str) -> Optional[StepResult]:
        return self.by_name().get(name)

    def __iter__(self):
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)
