from layerpatch.reporting.inputs import load_events, load_report, normalize_event
from layerpatch.reporting.models import ApplyOutcome, Report, ReportWarning
from layerpatch.reporting.render import (
    format_outcome_line,
    render_diagnostics,
    render_json,
    render_markdown,
    render_summary_line,
)
from layerpatch.reporting.summary import (
    build_may_proceed,
    compute_counts,
    compute_report,
    exit_code,
    failed_outcomes,
)

__all__ = [
    "load_events",
    "load_report",
    "normalize_event",
    "ApplyOutcome",
    "Report",
    "ReportWarning",
    "format_outcome_line",
    "render_diagnostics",
    "render_json",
    "render_markdown",
    "render_summary_line",
    "build_may_proceed",
    "compute_counts",
    "compute_report",
    "exit_code",
    "failed_outcomes",
]
