"""Change classifier.

Maps the paths touched by a change onto the three gates that decide which
job groups run:

- build_docs: documentation changed, or any code changed
- build_nbs: notebooks changed, or any code changed
- test_code: any code changed

Code changes reopen docs and notebooks because either can go stale when the
code underneath them moves. Runs that are not pull requests open every gate.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from fnmatch import fnmatchcase

from changegate.rules import DEFAULT_RULES
from changegate.types import Category, ChangeSet, ClassificationResult, PathRule

logger = logging.getLogger(__name__)

ALL_GATES_OPEN = ClassificationResult(build_docs=True, build_nbs=True, test_code=True)


def categorize(path: str, rules: Sequence[PathRule] = DEFAULT_RULES) -> Category:
    """Return the category of the first rule matching path; unmatched paths are code."""
    for rule in rules:
        if fnmatchcase(path, rule.pattern):
            return rule.category
    return Category.CODE


def classify_paths(
    change_set: Iterable[str],
    rules: Sequence[PathRule] = DEFAULT_RULES,
) -> dict[str, Category]:
    """Categorize every path in the change set."""
    return {path: categorize(path, rules) for path in change_set}


def classify(
    change_set: ChangeSet | Iterable[str],
    is_pull_request: bool,
    rules: Sequence[PathRule] = DEFAULT_RULES,
) -> ClassificationResult:
    """Decide which gates open for a change.

    Args:
        change_set: Paths modified between base and head
        is_pull_request: False for manual or direct runs, which skip inspection
        rules: Ordered rules, first match wins

    Returns:
        ClassificationResult with build_docs, build_nbs and test_code
    """
    if not is_pull_request:
        logger.info("not a pull request, opening all gates")
        return ALL_GATES_OPEN

    doc_changes = False
    nb_changes = False
    code_changes = False

    for path in change_set:
        category = categorize(path, rules)
        logger.debug("%s -> %s", path, category.value)
        if category is Category.DOC:
            doc_changes = True
        elif category is Category.NOTEBOOK:
            nb_changes = True
        elif category is Category.CODE:
            code_changes = True

    result = ClassificationResult(
        build_docs=doc_changes or code_changes,
        build_nbs=nb_changes or code_changes,
        test_code=code_changes,
    )
    logger.info(
        "classified change: build_docs=%s build_nbs=%s test_code=%s",
        result.build_docs,
        result.build_nbs,
        result.test_code,
    )
    return result
