from pathlib import Path

import typer

from layerpatch.reporting.inputs import load_events, load_report
from layerpatch.reporting.models import Report
from layerpatch.reporting.render import (
    default_output_paths,
    render_json,
    render_markdown,
    render_summary_line,
)
from layerpatch.reporting.summary import compute_report

report_app = typer.Typer()


@report_app.command("summary")
def report_summary_cmd(
    report_path: Path | None = typer.Option(None, "--report", help="Report JSON written by apply"),
    events_path: Path | None = typer.Option(None, "--events", help="Events JSONL written by apply"),
    out_dir: Path | None = typer.Option(None, "--out", help="Output directory"),
    format: str = typer.Option("md,json", "--format", help="Formats: md,json"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Overwrite existing files"),
):
    """Render a saved patch report (or an events log) as Markdown and JSON."""
    if (report_path is None) == (events_path is None):
        raise typer.BadParameter("Pass exactly one of --report or --events")

    source = Path(report_path or events_path)
    try:
        report = _load(report_path, events_path)
    except (FileNotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc))

    formats = {f.strip() for f in format.split(",") if f.strip()}
    unknown = formats - {"md", "json"}
    if unknown:
        raise typer.BadParameter(f"Unknown formats: {', '.join(sorted(unknown))}")

    outputs = default_output_paths(Path(out_dir) if out_dir else source.parent)
    try:
        if "md" in formats:
            _write_output(outputs["markdown"], render_markdown(report), overwrite)
        if "json" in formats:
            _write_output(outputs["json"], render_json(report), overwrite)
    except FileExistsError as exc:
        raise typer.BadParameter(str(exc))

    typer.echo("Report generated:")
    if "md" in formats:
        typer.echo(f"- Markdown: {outputs['markdown']}")
    if "json" in formats:
        typer.echo(f"- JSON: {outputs['json']}")
    typer.echo(render_summary_line(report))
    typer.echo(f"Warnings: {len(report.warnings)}")


def _load(report_path: Path | None, events_path: Path | None) -> Report:
    if report_path is not None:
        return load_report(report_path)

    run_id, outcomes, warnings = load_events(events_path)
    report = compute_report(outcomes, run_id=run_id)
    report.warnings.extend(warnings)
    return report


def _write_output(path: Path, content: str, overwrite: bool) -> None:
    if path.exists() and not overwrite:
        raise FileExistsError(f"{path} already exists. Use --overwrite to replace.")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
