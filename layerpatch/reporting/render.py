from __future__ import annotations

import json
from pathlib import Path

from layerpatch.patches.models import ApplyStatus
from layerpatch.reporting.models import ApplyOutcome, Report

OVERVIEW_HEADER = "## Overview"
STATUS_HEADER = "## Outcomes by Status"
PROBLEMS_HEADER = "## Diagnostics"
SKIPPED_HEADER = "## Skipped Patches"
WARNINGS_HEADER = "## Warnings"

QUIET_STATUSES = frozenset({ApplyStatus.APPLIED, ApplyStatus.ALREADY_APPLIED})


def format_outcome_line(outcome: ApplyOutcome) -> str:
    return f"{outcome.status}: {outcome.patch_file} -> {outcome.file_path or '-'}: {outcome.detail}"


def render_diagnostics(report: Report) -> list[str]:
    """One line per outcome that is neither Applied nor AlreadyApplied."""
    return [format_outcome_line(o) for o in report.outcomes if o.status not in QUIET_STATUSES]


def render_summary_line(report: Report) -> str:
    parts = [f"{report.total_patches} patch files"]
    parts.extend(f"{status}={count}" for status, count in report.counts.items() if count)
    if report.skipped_patches:
        parts.append(f"skipped={len(report.skipped_patches)}")
    verdict = "build may proceed" if report.may_proceed else "build must stop"
    return f"{', '.join(parts)}; {verdict}"


def render_markdown(report: Report) -> str:
    lines: list[str] = []
    header_parts = []
    if report.run_id:
        header_parts.append(f"Run: {report.run_id}")
    if report.patch_dir:
        header_parts.append(f"Patches: {report.patch_dir}")
    if report.dry_run:
        header_parts.append("Dry run")

    lines.append("# Patch Application Report")
    lines.append("")
    lines.append(" | ".join(header_parts) if header_parts else "Patch Application Report")
    lines.append("")

    lines.append(OVERVIEW_HEADER)
    lines.append("")
    lines.append("| Metric | Value |")
    lines.append("|--------|-------|")
    lines.append(f"| Patch files | {report.total_patches} |")
    lines.append(f"| File diffs | {len(report.outcomes)} |")
    lines.append(f"| Skipped patch files | {len(report.skipped_patches)} |")
    lines.append(f"| Build may proceed | {'yes' if report.may_proceed else 'no'} |")
    lines.append("")

    lines.append(STATUS_HEADER)
    lines.append("")
    lines.append("| Status | Count |")
    lines.append("|--------|-------|")
    for status, count in report.counts.items():
        lines.append(f"| {status} | {count} |")
    lines.append("")

    lines.append(PROBLEMS_HEADER)
    lines.append("")
    diagnostics = render_diagnostics(report)
    if diagnostics:
        for line in diagnostics:
            lines.append(f"- `{line}`")
    else:
        lines.append("None")
    lines.append("")

    lines.append(SKIPPED_HEADER)
    lines.append("")
    if report.skipped_patches:
        for name in report.skipped_patches:
            lines.append(f"- {name}")
    else:
        lines.append("None")
    lines.append("")

    lines.append(WARNINGS_HEADER)
    lines.append("")
    if report.warnings:
        for warn in report.warnings:
            parts = [warn.code, warn.message]
            if warn.line_number is not None:
                parts.append(f"line={warn.line_number}")
            lines.append(f"- {' | '.join(parts)}")
    else:
        lines.append("None")

    return "\n".join(lines)


def render_json(report: Report) -> str:
    # Round-trip through json for stable key order and indentation
    return json.dumps(json.loads(report.model_dump_json()), indent=2, sort_keys=True) + "\n"


def default_output_paths(out_dir: Path) -> dict[str, Path]:
    return {
        "markdown": out_dir / "patch_report.md",
        "json": out_dir / "patch_report.json",
    }
