import logging
from pathlib import Path

import typer
from pydantic import ValidationError

from layerpatch.config import (
    DEFAULT_CONFIG_NAME,
    ApplyOptions,
    ConfigError,
    LayerpatchConfig,
    load_config,
    parse_module_specs,
    strict_from_env,
)
from layerpatch.logging import setup_logging
from layerpatch.patches.orchestrator import apply_all
from layerpatch.reporting.cli import report_app
from layerpatch.reporting.render import render_diagnostics, render_json, render_markdown, render_summary_line
from layerpatch.reporting.summary import exit_code

logger = logging.getLogger(__name__)

app = typer.Typer(no_args_is_help=True)
app.add_typer(report_app, name="report", help="Render saved patch reports")


@app.callback()
def main():
    """
    layerpatch CLI
    """
    pass


@app.command("apply")
def apply_cmd(
    patch_dir: Path | None = typer.Argument(None, help="Directory holding .patch/.diff files"),
    module: list[str] | None = typer.Option(None, "--module", "-m", help="Module root as NAME=ROOT (repeatable)"),
    config: Path | None = typer.Option(None, "--config", "-c", help=f"YAML config (default: ./{DEFAULT_CONFIG_NAME} if present)"),
    allow_empty: bool = typer.Option(False, "--allow-empty", help="Treat empty patches as harmless"),
    whitespace_fix: bool = typer.Option(False, "--whitespace-fix", help="Ignore trailing whitespace when matching"),
    strict: bool = typer.Option(False, "--strict", help="Stop after the first failing patch file"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Check patches without writing"),
    fuzz_window: int | None = typer.Option(None, "--fuzz-window", help="Lines a hunk may drift from its declared position"),
    context_fuzz: int | None = typer.Option(None, "--context-fuzz", help="Outer context lines a hunk may ignore"),
    workers: int | None = typer.Option(None, "--workers", help="Threads for independent files within one patch"),
    report_json: Path | None = typer.Option(None, "--report-json", help="Write the report as JSON"),
    report_md: Path | None = typer.Option(None, "--report-md", help="Write the report as Markdown"),
    events: Path | None = typer.Option(None, "--events", help="Append one JSON line per outcome"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Apply every patch in PATCH_DIR to the configured module roots."""
    setup_logging(logging.DEBUG if verbose else None)

    try:
        file_config = _load_file_config(config)
        modules = {**file_config.modules, **parse_module_specs(module or [])}
    except ConfigError as exc:
        raise typer.BadParameter(str(exc))

    patch_dir = patch_dir or file_config.patch_dir
    if patch_dir is None:
        raise typer.BadParameter("No patch directory given (argument or patch_dir in config)")
    if not modules:
        raise typer.BadParameter("No module roots configured (--module NAME=ROOT or modules in config)")

    overrides = {
        "allow_empty": allow_empty,
        "whitespace_fix": whitespace_fix,
        "strict": strict,
        "dry_run": dry_run,
        "fuzz_window": fuzz_window,
        "context_fuzz": context_fuzz,
        "workers": workers,
        "events_file": events,
    }
    merged = file_config.options.model_dump()
    # Flags only switch options on; values left at None fall back to the file
    merged.update({key: value for key, value in overrides.items() if value is not None and value is not False})
    if strict_from_env():
        merged["strict"] = True
    try:
        options = ApplyOptions.model_validate(merged)
    except ValidationError as exc:
        raise typer.BadParameter(str(exc))

    try:
        report = apply_all(patch_dir, modules, options)
    except (FileNotFoundError, NotADirectoryError) as exc:
        raise typer.BadParameter(str(exc))

    for line in render_diagnostics(report):
        typer.echo(line)
    for name in report.skipped_patches:
        typer.echo(f"Skipped: {name}")
    typer.echo(render_summary_line(report))

    if report_json:
        _write_report(report_json, render_json(report))
    if report_md:
        _write_report(report_md, render_markdown(report))

    raise typer.Exit(code=exit_code(report))


def _load_file_config(config: Path | None) -> LayerpatchConfig:
    if config is not None:
        return load_config(config)
    default = Path(DEFAULT_CONFIG_NAME)
    if default.is_file():
        logger.debug("Using %s from the working directory", default)
        return load_config(default)
    return LayerpatchConfig()


def _write_report(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
