import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from layerpatch.patches.models import ApplyStatus
from layerpatch.reporting.models import ApplyOutcome, Report, ReportWarning
from layerpatch.util.jsonl import read_jsonl


def load_report(report_path: Path) -> Report:
    report_path = Path(report_path)
    if not report_path.exists():
        raise FileNotFoundError(f"report not found: {report_path}")

    with report_path.open("r", encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{report_path} is not valid JSON: {exc}") from exc

    try:
        report = Report.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(f"{report_path} is not a patch report: {exc}") from exc

    # JSON artifacts sort their keys; restore the status order
    report.counts = {status: report.counts.get(status, 0) for status in ApplyStatus}
    return report


def load_events(
    events_path: Path,
) -> tuple[str | None, list[ApplyOutcome], list[ReportWarning]]:
    """
    Read an events file written during ``apply``.

    Returns the run id of the last valid record, the outcomes in file order,
    and one warning per line that could not be used.
    """

    events_path = Path(events_path)
    if not events_path.exists():
        raise FileNotFoundError(f"events file not found: {events_path}")

    run_id: str | None = None
    outcomes: list[ApplyOutcome] = []
    warnings: list[ReportWarning] = []

    for line_number, record in read_jsonl(events_path):
        if record is None:
            warnings.append(
                ReportWarning(
                    code="invalid_json",
                    message="line is not a JSON object",
                    line_number=line_number,
                )
            )
            continue
        outcome = normalize_event(record)
        if outcome is None:
            warnings.append(
                ReportWarning(
                    code="invalid_record",
                    message="record has no usable outcome",
                    line_number=line_number,
                )
            )
            continue
        run_id = record.get("run_id") or run_id
        outcomes.append(outcome)

    return run_id, outcomes, warnings


def normalize_event(record: dict[str, Any]) -> ApplyOutcome | None:
    if record.get("event") != "outcome":
        return None
    raw = record.get("outcome")
    if not isinstance(raw, dict):
        return None
    try:
        return ApplyOutcome.model_validate(raw)
    except ValidationError:
        return None
