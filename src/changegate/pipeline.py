"""Pipeline orchestration: classify, fan out gated job groups, join, aggregate."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from changegate.aggregator import aggregate, join_outcomes
from changegate.classifier import classify, classify_paths
from changegate.git import DEFAULT_BASE, compute_change_set
from changegate.jobs import JobRunner, JobTracker, make_subprocess_runner, should_run
from changegate.report import write_report
from changegate.rules import JobGroupConfig, PipelineConfig, load_config
from changegate.types import ChangeSet, ClassificationResult, GateDecision, JobOutcome, JobState

logger = logging.getLogger(__name__)

DETERMINISTIC_TIMESTAMP = "1970-01-01T00:00:00Z"

# Outcomes a started job group may end in; skipped is reserved for groups that never start.
RUN_OUTCOMES = frozenset({JobOutcome.SUCCESS, JobOutcome.FAILURE, JobOutcome.CANCELLED})


@dataclass
class PipelineReport:
    """Complete record of one pipeline run."""

    schema_version: str = "1.0"
    generated_at: str = ""
    timestamp_mode: str = "deterministic"
    status: str = "passed"
    is_pull_request: bool = True
    ref: str | None = None
    change_set: list[dict] = field(default_factory=list)
    classification: dict = field(default_factory=dict)
    jobs: dict = field(default_factory=dict)
    failed_groups: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if self.status == "passed" else 1

    def to_dict(self) -> dict:
        return asdict(self)


def get_timestamp(timestamp_mode: str) -> str:
    """Return the report timestamp for the given mode."""
    if timestamp_mode == "deterministic":
        return DETERMINISTIC_TIMESTAMP
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class PipelineRun:
    """One execution of the gated job groups.

    Gated-out groups are skipped without starting. Gated-in groups run in
    parallel on a thread pool; ``execute`` joins on all of them before
    reducing the outcomes.
    """

    def __init__(
        self,
        job_groups: tuple[JobGroupConfig, ...],
        classification: ClassificationResult,
        runner: JobRunner,
        *,
        ref: str | None = None,
        max_workers: int | None = None,
    ):
        self.job_groups = job_groups
        self.classification = classification
        self.runner = runner
        self.ref = ref
        self.max_workers = max_workers or max(len(job_groups), 1)
        self.tracker = JobTracker(group.name for group in job_groups)
        self._cancel_events = {group.name: threading.Event() for group in job_groups}

    def cancel(self, name: str) -> None:
        """Cancel one job group; siblings keep running."""
        if name not in self._cancel_events:
            raise KeyError(f"unknown job group: {name}")
        logger.warning("cancellation requested for %s", name)
        self._cancel_events[name].set()

    def _run_group(self, group: JobGroupConfig) -> JobOutcome:
        cancel = self._cancel_events[group.name]
        self.tracker.transition(group.name, JobState.RUNNING)
        try:
            outcome = self.runner(group, self.ref, cancel)
        except Exception:
            logger.exception("job group %s crashed", group.name)
            outcome = JobOutcome.FAILURE
        if not isinstance(outcome, JobOutcome) or outcome not in RUN_OUTCOMES:
            logger.error("job group %s returned %r, recording failure", group.name, outcome)
            outcome = JobOutcome.FAILURE
        if cancel.is_set():
            outcome = JobOutcome.CANCELLED
        self.tracker.finish(group.name, outcome)
        return outcome

    def execute(self) -> GateDecision:
        outcomes: dict[str, JobOutcome] = {}
        futures: dict[str, Future[JobOutcome]] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="changegate") as pool:
            for group in self.job_groups:
                if should_run(group, self.classification):
                    futures[group.name] = pool.submit(self._run_group, group)
                else:
                    self.tracker.transition(group.name, JobState.SKIPPED)
                    outcomes[group.name] = JobOutcome.SKIPPED
            outcomes.update(join_outcomes(futures))

        ordered = {group.name: outcomes[group.name] for group in self.job_groups}
        return aggregate(ordered)


def build_report(
    *,
    change_set: ChangeSet,
    classification: ClassificationResult,
    decision: GateDecision,
    config: PipelineConfig,
    is_pull_request: bool,
    ref: str | None,
    timestamp_mode: str,
) -> PipelineReport:
    """Assemble the report for a finished run."""
    categories = classify_paths(change_set, config.rules)
    jobs = {}
    for group in config.job_groups:
        outcome = decision.outcomes.get(group.name, JobOutcome.SKIPPED)
        jobs[group.name] = {
            "gate": group.gate.value,
            "result": outcome.value,
            "variants": [variant.name for variant in group.variants],
        }
    return PipelineReport(
        generated_at=get_timestamp(timestamp_mode),
        timestamp_mode=timestamp_mode,
        status=decision.status,
        is_pull_request=is_pull_request,
        ref=ref,
        change_set=[{"path": path, "category": categories[path].value} for path in change_set],
        classification=classification.to_outputs(),
        jobs=jobs,
        failed_groups=list(decision.failed_groups),
    )


def run_pipeline(
    repo_root: Path,
    is_pull_request: bool,
    *,
    ref: str | None = None,
    base: str = DEFAULT_BASE,
    change_set: ChangeSet | None = None,
    config: PipelineConfig | None = None,
    runner: JobRunner | None = None,
    out_dir: Path | None = None,
    timestamp_mode: str = "deterministic",
    max_workers: int | None = None,
) -> PipelineReport:
    """Classify the change, run the gated job groups, and aggregate their results.

    Args:
        repo_root: Repository root; job commands run here
        is_pull_request: False for manual runs, which open every gate
        ref: Optional revision override passed through to the job groups
        base: Diff base used when change_set is not supplied
        change_set: Precomputed change set (skips git)
        config: Pipeline config (defaults to .changegate/pipeline.yaml)
        runner: Job runner (defaults to running configured commands)
        out_dir: When set, write CHANGE_GATE_REPORT.json and .md here
        timestamp_mode: "deterministic" or "wallclock"
        max_workers: Thread pool size (defaults to one per job group)

    Returns:
        PipelineReport for the run

    Raises:
        ChangeSetError: If the change set cannot be computed
        ConfigError: If the pipeline config is invalid
    """
    if config is None:
        config = load_config(repo_root)

    if change_set is None:
        change_set = compute_change_set(repo_root, base=base) if is_pull_request else ChangeSet()

    classification = classify(change_set, is_pull_request, config.rules)

    run = PipelineRun(
        config.job_groups,
        classification,
        runner or make_subprocess_runner(repo_root),
        ref=ref,
        max_workers=max_workers,
    )
    decision = run.execute()

    report = build_report(
        change_set=change_set,
        classification=classification,
        decision=decision,
        config=config,
        is_pull_request=is_pull_request,
        ref=ref,
        timestamp_mode=timestamp_mode,
    )

    if out_dir is not None:
        write_report(report, out_dir)

    return report
