"""Git command runner and change set acquisition."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from changegate.types import ChangeSet

logger = logging.getLogger(__name__)

# For a pull request build HEAD is the merge commit; its first parent is the base branch.
DEFAULT_BASE = "HEAD^"


@dataclass(frozen=True)
class ExecResult:
    """Result envelope for subprocess execution."""

    argv: tuple[str, ...]
    cwd: Path
    returncode: int
    stdout: str
    stderr: str


class ExecError(RuntimeError):
    """Raised when a command returns non-zero in check mode."""

    def __init__(self, result: ExecResult):
        rendered = " ".join(result.argv)
        detail = (result.stderr or result.stdout).strip()
        super().__init__(f"command failed ({result.returncode}): {rendered}\n{detail}")
        self.result = result


class ChangeSetError(RuntimeError):
    """The change set could not be computed (bad revision range, missing git)."""


def run_git(
    args: list[str],
    *,
    repo_root: Path,
    check: bool = True,
) -> ExecResult:
    """Run git command rooted at repo and return structured result."""
    argv = ["git", *args]
    completed = subprocess.run(
        argv,
        cwd=repo_root,
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
        check=False,
    )
    result = ExecResult(
        argv=tuple(argv),
        cwd=repo_root.resolve(),
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )
    if check and result.returncode != 0:
        raise ExecError(result)
    return result


def parse_name_only(output: str) -> ChangeSet:
    """Parse NUL-separated ``git diff --name-only -z`` output into a change set.

    With ``-z`` git writes paths verbatim, so non-ASCII names are not
    octal-escaped and need no unquoting.
    """
    return ChangeSet.of(Path(entry).as_posix() for entry in output.split("\0") if entry)


def compute_change_set(
    repo_root: Path,
    *,
    base: str = DEFAULT_BASE,
    head: str | None = None,
) -> ChangeSet:
    """Diff base against head (or the working tree) and return changed paths.

    Raises:
        ChangeSetError: If git is unavailable or the revision range is invalid
    """
    args = ["diff", base]
    if head:
        args.append(head)
    args.extend(["--name-only", "-z"])

    try:
        result = run_git(args, repo_root=repo_root)
    except ExecError as exc:
        raise ChangeSetError(f"unable to diff {base}..{head or 'worktree'}: {exc}") from exc
    except FileNotFoundError as exc:
        raise ChangeSetError(f"git is not available: {exc}") from exc

    change_set = parse_name_only(result.stdout)
    if not change_set:
        logger.warning("diff %s..%s is empty; treating as no changes", base, head or "worktree")
    for path in change_set:
        logger.info("changed: %s", path)
    return change_set
