from collections import Counter
from collections.abc import Iterable

from layerpatch.patches.models import ApplyStatus
from layerpatch.reporting.models import ApplyOutcome, Report


def compute_report(
    outcomes: list[ApplyOutcome],
    total_patches: int | None = None,
    run_id: str | None = None,
    patch_dir: str | None = None,
    skipped_patches: Iterable[str] = (),
    dry_run: bool = False,
) -> Report:
    if total_patches is None:
        total_patches = len({o.patch_file for o in outcomes})

    return Report(
        run_id=run_id,
        patch_dir=patch_dir,
        dry_run=dry_run,
        total_patches=total_patches,
        counts=compute_counts(outcomes),
        outcomes=list(outcomes),
        skipped_patches=list(skipped_patches),
        may_proceed=build_may_proceed(outcomes),
    )


def compute_counts(outcomes: Iterable[ApplyOutcome]) -> dict[ApplyStatus, int]:
    counter: Counter[ApplyStatus] = Counter(o.status for o in outcomes)
    # Every status is present, in declaration order, so reports diff cleanly
    return {status: counter.get(status, 0) for status in ApplyStatus}


def build_may_proceed(outcomes: Iterable[ApplyOutcome]) -> bool:
    return not any(o.blocks_build for o in outcomes)


def failed_outcomes(report: Report) -> list[ApplyOutcome]:
    return [o for o in report.outcomes if o.blocks_build]


def exit_code(report: Report) -> int:
    return 0 if report.may_proceed else 1
