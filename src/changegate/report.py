"""Report and CI output writers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from pathlib import Path

    from changegate.pipeline import PipelineReport
    from changegate.types import ClassificationResult

REPORT_JSON_FILENAME = "CHANGE_GATE_REPORT.json"
REPORT_MD_FILENAME = "CHANGE_GATE_REPORT.md"

_RESULT_SYMBOLS = {
    "success": "✅",
    "failure": "❌",
    "cancelled": "🚫",
    "skipped": "⏭️",
}


def write_report(report: PipelineReport, out_dir: Path) -> tuple[Path, Path]:
    """Write JSON and markdown reports; return their paths."""
    out_dir.mkdir(parents=True, exist_ok=True)

    json_path = out_dir / REPORT_JSON_FILENAME
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(report.to_dict(), f, indent=2, sort_keys=True)
        f.write("\n")

    md_path = out_dir / REPORT_MD_FILENAME
    with open(md_path, "w", encoding="utf-8") as f:
        _write_markdown_report(f, report)

    return json_path, md_path


def _write_markdown_report(f: TextIO, report: PipelineReport) -> None:
    """Write human-readable markdown report."""
    f.write("# Change Gate Report\n\n")

    status_emoji = "✅" if report.status == "passed" else "❌"
    f.write(f"**Status**: {status_emoji} {report.status.upper()}\n\n")
    f.write(f"**Generated**: {report.generated_at} ({report.timestamp_mode})\n\n")
    trigger = "pull request" if report.is_pull_request else "manual"
    f.write(f"**Trigger**: {trigger}\n")
    if report.ref:
        f.write(f"**Ref**: `{report.ref}`\n")
    f.write("\n")

    f.write("## Classification\n\n")
    f.write("| Output | Value |\n")
    f.write("|---|---|\n")
    for key in sorted(report.classification):
        f.write(f"| {key} | {report.classification[key]} |\n")
    f.write("\n")

    f.write("## Changed Files\n\n")
    if report.change_set:
        for entry in report.change_set:
            f.write(f"- `{entry['path']}` ({entry['category']})\n")
    else:
        f.write("*(none)*\n")
    f.write("\n")

    f.write("## Job Groups\n\n")
    for name, job in report.jobs.items():
        symbol = _RESULT_SYMBOLS.get(job["result"], "?")
        f.write(f"- {symbol} **{name}**: {job['result']} (gate: {job['gate']})\n")
    f.write("\n")

    if report.failed_groups:
        f.write("## Failed Or Cancelled\n\n")
        for name in report.failed_groups:
            f.write(f"- {name}\n")
        f.write("\n")

    f.write("## Exit Code\n\n")
    if report.status == "passed":
        f.write("0 (all checks passed)\n")
    else:
        f.write("1 (at least one check failed or was cancelled)\n")


def render_github_output(result: ClassificationResult) -> str:
    """Render flags as ``key=Value`` lines with capitalized booleans."""
    return "".join(f"{key}={value}\n" for key, value in result.to_outputs().items())


def write_github_output(path: Path, result: ClassificationResult) -> None:
    """Append flags to a CI step output file."""
    with open(path, "a", encoding="utf-8") as f:
        f.write(render_github_output(result))
