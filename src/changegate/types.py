"""Value types shared by the classifier, the job runner, and the aggregator."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum


class Category(str, Enum):
    """Kind of change a single path represents."""

    IGNORED = "ignored"
    DOC = "doc"
    NOTEBOOK = "notebook"
    CODE = "code"


class Gate(str, Enum):
    """Classification flag that decides whether a job group starts."""

    BUILD_DOCS = "build_docs"
    BUILD_NBS = "build_nbs"
    TEST_CODE = "test_code"
    ALWAYS = "always"


class JobOutcome(str, Enum):
    """Terminal result reported by one job group."""

    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class JobState(str, Enum):
    """Lifecycle state of one job group."""

    PENDING = "pending"
    RUNNING = "running"
    SKIPPED = "skipped"
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobState.PENDING, JobState.RUNNING)

    def to_outcome(self) -> JobOutcome:
        """Map a terminal state onto its outcome."""
        if not self.is_terminal:
            raise InvalidTransitionError(f"state {self.value} is not terminal")
        return JobOutcome(self.value)


ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.PENDING: frozenset({JobState.SKIPPED, JobState.RUNNING}),
    JobState.RUNNING: frozenset({JobState.SUCCESS, JobState.FAILURE, JobState.CANCELLED}),
    JobState.SKIPPED: frozenset(),
    JobState.SUCCESS: frozenset(),
    JobState.FAILURE: frozenset(),
    JobState.CANCELLED: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    """Raised when a job group is moved along an edge its lifecycle does not have."""


@dataclass(frozen=True)
class ChangeSet:
    """Ordered, immutable list of paths modified between two revisions."""

    paths: tuple[str, ...] = ()

    @classmethod
    def of(cls, paths: Iterable[str]) -> ChangeSet:
        return cls(paths=tuple(paths))

    def __iter__(self):
        return iter(self.paths)

    def __len__(self) -> int:
        return len(self.paths)


@dataclass(frozen=True)
class PathRule:
    """Glob pattern paired with the category it assigns."""

    pattern: str
    category: Category


@dataclass(frozen=True)
class ClassificationResult:
    """Which gates are open for this pipeline run."""

    build_docs: bool
    build_nbs: bool
    test_code: bool

    def is_open(self, gate: Gate) -> bool:
        if gate is Gate.ALWAYS:
            return True
        return bool(getattr(self, gate.value))

    def to_outputs(self) -> dict[str, bool]:
        """Flags keyed by the CI output names."""
        return {
            "buildDocs": self.build_docs,
            "buildNbs": self.build_nbs,
            "testCode": self.test_code,
        }


@dataclass(frozen=True)
class GateDecision:
    """Final pass/fail verdict over all job group outcomes."""

    passed: bool
    outcomes: Mapping[str, JobOutcome] = field(default_factory=dict)
    failed_groups: tuple[str, ...] = ()

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    @property
    def status(self) -> str:
        return "passed" if self.passed else "failed"
