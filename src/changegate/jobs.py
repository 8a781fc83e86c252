"""Job group execution and lifecycle tracking."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import threading
from collections.abc import Callable, Iterable
from pathlib import Path

from changegate.rules import JobGroupConfig, JobVariantConfig
from changegate.types import (
    ALLOWED_TRANSITIONS,
    ClassificationResult,
    InvalidTransitionError,
    JobOutcome,
    JobState,
)

logger = logging.getLogger(__name__)

REF_ENV_VAR = "CHANGEGATE_REF"
CANCEL_POLL_SECONDS = 0.2
# How long a cancelled command gets to exit after SIGTERM before it is killed.
TERMINATE_GRACE_SECONDS = 5.0

JobRunner = Callable[[JobGroupConfig, str | None, threading.Event], JobOutcome]


def should_run(group: JobGroupConfig, classification: ClassificationResult) -> bool:
    """Return True when the group's gate is open."""
    return classification.is_open(group.gate)


class JobTracker:
    """Thread-safe record of every job group's lifecycle state."""

    def __init__(self, names: Iterable[str]):
        self._lock = threading.Lock()
        self._states: dict[str, JobState] = {name: JobState.PENDING for name in names}

    def transition(self, name: str, new_state: JobState) -> None:
        with self._lock:
            current = self._states.get(name)
            if current is None:
                raise InvalidTransitionError(f"unknown job group: {name}")
            if new_state not in ALLOWED_TRANSITIONS[current]:
                raise InvalidTransitionError(
                    f"job group {name}: cannot move from {current.value} to {new_state.value}"
                )
            self._states[name] = new_state
        logger.info("job %s: %s -> %s", name, current.value, new_state.value)

    def finish(self, name: str, outcome: JobOutcome) -> None:
        self.transition(name, JobState(outcome.value))

    def state(self, name: str) -> JobState:
        with self._lock:
            return self._states[name]

    def snapshot(self) -> dict[str, JobState]:
        with self._lock:
            return dict(self._states)

    def all_terminal(self) -> bool:
        with self._lock:
            return all(state.is_terminal for state in self._states.values())


def _render_command(variant: JobVariantConfig, ref: str | None) -> list[str]:
    return shlex.split(variant.command.format(ref=ref or ""))


def _stop(proc: subprocess.Popen, name: str) -> None:
    proc.terminate()
    try:
        proc.wait(timeout=TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        logger.warning("%s ignored terminate, killing", name)
        proc.kill()
        proc.wait()


def run_variant(
    variant: JobVariantConfig,
    *,
    cwd: Path,
    ref: str | None,
    cancel: threading.Event,
) -> JobOutcome:
    """Run one variant's command to completion, or until cancelled."""
    if cancel.is_set():
        return JobOutcome.CANCELLED

    argv = _render_command(variant, ref)
    env = {**os.environ, **variant.env, REF_ENV_VAR: ref or ""}
    logger.info("starting %s: %s", variant.name, " ".join(argv))
    try:
        proc = subprocess.Popen(argv, cwd=cwd, env=env)
    except OSError as exc:
        logger.error("could not start %s: %s", variant.name, exc)
        return JobOutcome.FAILURE

    while True:
        try:
            returncode = proc.wait(timeout=CANCEL_POLL_SECONDS)
            break
        except subprocess.TimeoutExpired:
            if cancel.is_set():
                _stop(proc, variant.name)
                logger.warning("%s cancelled", variant.name)
                return JobOutcome.CANCELLED

    if returncode != 0:
        logger.error("%s failed with exit code %d", variant.name, returncode)
        return JobOutcome.FAILURE
    return JobOutcome.SUCCESS


def combine_variant_outcomes(outcomes: Iterable[JobOutcome]) -> JobOutcome:
    """Reduce matrix variant outcomes to one group outcome."""
    collected = list(outcomes)
    if JobOutcome.CANCELLED in collected:
        return JobOutcome.CANCELLED
    if JobOutcome.FAILURE in collected:
        return JobOutcome.FAILURE
    return JobOutcome.SUCCESS


def make_subprocess_runner(cwd: Path) -> JobRunner:
    """Build a runner that executes each variant as a subprocess in cwd.

    Variants run sequentially and all of them run, even after one fails.
    """

    def _run(group: JobGroupConfig, ref: str | None, cancel: threading.Event) -> JobOutcome:
        return combine_variant_outcomes(
            run_variant(variant, cwd=cwd, ref=ref, cancel=cancel) for variant in group.variants
        )

    return _run
