"""Result aggregator: reduce job group outcomes to a single gate decision."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from concurrent.futures import ALL_COMPLETED, Future, wait
from typing import Any

from changegate.types import GateDecision, JobOutcome

logger = logging.getLogger(__name__)

FAILING_OUTCOMES = frozenset({JobOutcome.FAILURE, JobOutcome.CANCELLED})


def aggregate(outcomes: Mapping[str, JobOutcome]) -> GateDecision:
    """Fail if any job group failed or was cancelled; skipped groups are neutral."""
    failed = tuple(sorted(name for name, outcome in outcomes.items() if outcome in FAILING_OUTCOMES))
    decision = GateDecision(passed=not failed, outcomes=dict(outcomes), failed_groups=failed)
    if failed:
        logger.info("gate failed: %s", ", ".join(f"{name}={outcomes[name].value}" for name in failed))
    else:
        logger.info("gate passed (%d job groups)", len(outcomes))
    return decision


def parse_outcome(value: Any) -> JobOutcome:
    """Parse a status string, or a ``{"result": ...}`` mapping, into a JobOutcome."""
    if isinstance(value, Mapping):
        if "result" not in value:
            raise ValueError(f"job entry has no 'result' field: {dict(value)}")
        value = value["result"]
    if isinstance(value, JobOutcome):
        return value
    try:
        return JobOutcome(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(o.value for o in JobOutcome)
        raise ValueError(f"unknown job status {value!r} (expected one of: {allowed})") from None


def parse_outcomes(data: Mapping[str, Any]) -> dict[str, JobOutcome]:
    """Parse a mapping of job group name to status.

    Accepts both ``{"lint": "success"}`` and the CI ``needs`` context
    shape ``{"lint": {"result": "success", "outputs": {}}}``.
    """
    if not isinstance(data, Mapping):
        raise ValueError("job results must be a mapping of job group name to status")
    return {str(name): parse_outcome(value) for name, value in data.items()}


def join_outcomes(futures: Mapping[str, Future[JobOutcome]]) -> dict[str, JobOutcome]:
    """Block until every job future is done, then collect their outcomes.

    A future that raised counts as a failure of its job group; a future
    cancelled before it started counts as cancelled.
    """
    if futures:
        wait(list(futures.values()), return_when=ALL_COMPLETED)

    outcomes: dict[str, JobOutcome] = {}
    for name, future in futures.items():
        if future.cancelled():
            outcomes[name] = JobOutcome.CANCELLED
            continue
        exc = future.exception()
        if exc is not None:
            logger.error("job %s raised: %s", name, exc)
            outcomes[name] = JobOutcome.FAILURE
            continue
        outcomes[name] = future.result()
    return outcomes
