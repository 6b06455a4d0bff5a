import logging
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

import ulid

from layerpatch.config import ApplyOptions
from layerpatch.patches.exceptions import (
    ContextMismatchError,
    EmptyPatchError,
    PatchIOError,
    PatchParseError,
    PathUnresolvedError,
)
from layerpatch.patches.matcher import FilePlan, MatchMode, apply_file_diff
from layerpatch.patches.models import ApplyStatus, FileDiff, PatchFile, ResolvedTarget
from layerpatch.patches.parser import parse_patch
from layerpatch.patches.resolver import ModuleResolver
from layerpatch.patches.writer import PathLocks, atomic_write, read_target, remove_target
from layerpatch.reporting.models import ApplyOutcome, Report
from layerpatch.reporting.summary import compute_report
from layerpatch.util.jsonl import append_jsonl

logger = logging.getLogger(__name__)

_Group = list[tuple[int, FileDiff, ResolvedTarget]]


def discover_patches(patch_dir: Path, suffixes: list[str] | tuple[str, ...]) -> list[PatchFile]:
    """
    List the patch files of a directory in application order.

    Only regular, non-hidden files with one of ``suffixes`` count. The order
    is the byte-wise order of the file names, never the listing order.
    """

    patch_dir = Path(patch_dir)
    if not patch_dir.exists():
        raise FileNotFoundError(f"patch directory not found: {patch_dir}")
    if not patch_dir.is_dir():
        raise NotADirectoryError(f"not a directory: {patch_dir}")

    patches = [
        PatchFile(name=entry.name, path=entry)
        for entry in patch_dir.iterdir()
        if entry.is_file() and not entry.name.startswith(".") and entry.name.endswith(tuple(suffixes))
    ]
    patches.sort(key=PatchFile.sort_key)
    logger.debug("Discovered %d patch files in %s", len(patches), patch_dir)
    return patches


class PatchSetOrchestrator:
    """Applies every patch file of a directory, in order, and reports the outcomes."""

    def __init__(
        self,
        module_roots: Mapping[str, Path | str],
        options: ApplyOptions | None = None,
    ):
        self.options = options or ApplyOptions()
        self.resolver = ModuleResolver(module_roots)
        self.locks = PathLocks(self.options.lock_dir)
        self.match_options = self.options.match_options()
        self.run_id = str(ulid.ULID())

    def run(self, patch_dir: Path) -> Report:
        patches = discover_patches(patch_dir, self.options.suffixes)
        logger.info(
            "Applying %d patch files from %s to modules %s",
            len(patches),
            patch_dir,
            ", ".join(self.resolver.module_names) or "(none)",
        )

        outcomes: list[ApplyOutcome] = []
        skipped: list[str] = []
        for position, patch in enumerate(patches):
            patch_outcomes = self.apply_patch_file(patch)
            outcomes.extend(patch_outcomes)
            for outcome in patch_outcomes:
                self._record_event(outcome)

            if self.options.strict and any(o.blocks_build for o in patch_outcomes):
                remaining = patches[position + 1:]
                logger.warning(
                    "Strict mode: stopping after %s, %d patch files not applied",
                    patch.name,
                    len(remaining),
                )
                # Later files are still parsed so their ParseErrors are reported
                for later in remaining:
                    failure = self.parse_patch_file(later)[1]
                    if failure is not None and failure.status == ApplyStatus.PARSE_ERROR:
                        outcomes.append(failure)
                        self._record_event(failure)
                    else:
                        skipped.append(later.name)
                break

        report = compute_report(
            outcomes,
            total_patches=len(patches),
            run_id=self.run_id,
            patch_dir=str(patch_dir),
            skipped_patches=skipped,
            dry_run=self.options.dry_run,
        )
        logger.info("Patch run %s finished, build may proceed: %s", self.run_id, report.may_proceed)
        return report

    def apply_patch_file(self, patch: PatchFile) -> list[ApplyOutcome]:
        """Outcomes of one patch file, one per FileDiff in declaration order."""
        file_diffs, failure = self.parse_patch_file(patch)
        if failure is not None:
            return [failure]

        results: dict[int, ApplyOutcome] = {}
        groups: dict[Path, _Group] = {}
        for index, file_diff in enumerate(file_diffs):
            try:
                target = self.resolver.resolve(file_diff)
            except PathUnresolvedError as e:
                logger.warning("Patch %s: cannot resolve %s: %s", patch.name, e.declared_path, e.reason)
                results[index] = ApplyOutcome(
                    patch_file=patch.name,
                    file_path=file_diff.path,
                    status=ApplyStatus.PATH_UNRESOLVED,
                    detail=e.reason,
                )
                continue
            # FileDiffs on the same target stay together, in declaration order
            groups.setdefault(target.absolute_path, []).append((index, file_diff, target))

        workers = min(self.options.workers, len(groups))
        if workers <= 1:
            for group in groups.values():
                results.update(self._apply_group(patch, group))
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="layerpatch") as executor:
                futures = [executor.submit(self._apply_group, patch, group) for group in groups.values()]
                for future in futures:
                    results.update(future.result())

        return [results[index] for index in sorted(results)]

    def parse_patch_file(self, patch: PatchFile) -> tuple[list[FileDiff], ApplyOutcome | None]:
        """
        Read and parse one patch file without touching any target.

        Returns the FileDiffs, or an empty list and the outcome that
        replaces them when the file cannot be read or parsed.
        """
        try:
            data = patch.path.read_bytes()
        except OSError as e:
            logger.warning("Cannot read patch %s: %s", patch.name, e)
            return [], ApplyOutcome(patch_file=patch.name, status=ApplyStatus.IO_ERROR, detail=f"cannot read patch: {e}")

        try:
            return parse_patch(data), None
        except EmptyPatchError as e:
            status = ApplyStatus.EMPTY if self.options.allow_empty else ApplyStatus.PARSE_ERROR
            logger.info("Patch %s is empty (%s)", patch.name, status)
            return [], ApplyOutcome(patch_file=patch.name, status=status, detail=str(e))
        except PatchParseError as e:
            logger.warning("Cannot parse patch %s: %s", patch.name, e)
            return [], ApplyOutcome(patch_file=patch.name, status=ApplyStatus.PARSE_ERROR, detail=str(e))

    def _apply_group(self, patch: PatchFile, group: _Group) -> dict[int, ApplyOutcome]:
        return {index: self._apply_file_diff(patch, file_diff, target) for index, file_diff, target in group}

    def _apply_file_diff(self, patch: PatchFile, file_diff: FileDiff, target: ResolvedTarget) -> ApplyOutcome:
        path = target.absolute_path

        def outcome(status: ApplyStatus, detail: str, plan: FilePlan | None = None) -> ApplyOutcome:
            return ApplyOutcome(
                patch_file=patch.name,
                file_path=str(path),
                status=status,
                detail=detail,
                module=target.module,
                hunks_applied=plan.applied_count if plan else 0,
                hunks_already_applied=plan.already_applied_count if plan else 0,
            )

        try:
            with self.locks.hold(path):
                current = read_target(path)
                if current is None and not (file_diff.is_new_file or file_diff.is_deleted_file):
                    raise PatchIOError(f"{path} disappeared before it could be read", path=str(path))

                plan = apply_file_diff(file_diff, current, self.match_options)
                if plan.status == ApplyStatus.APPLIED and not self.options.dry_run:
                    if plan.deletes_file:
                        remove_target(path)
                    else:
                        atomic_write(path, plan.content)
        except ContextMismatchError as e:
            logger.warning("Patch %s does not apply to %s: %s", patch.name, path, e)
            return outcome(ApplyStatus.CONTEXT_MISMATCH, str(e))
        except PatchIOError as e:
            logger.error("Patch %s: I/O failure on %s: %s", patch.name, path, e)
            return outcome(ApplyStatus.IO_ERROR, str(e))
        except OSError as e:
            logger.error("Patch %s: I/O failure on %s: %s", patch.name, path, e)
            return outcome(ApplyStatus.IO_ERROR, f"{type(e).__name__}: {e}")

        if plan.status == ApplyStatus.APPLIED:
            logger.info("Patch %s applied to %s", patch.name, path)
        else:
            logger.info("Patch %s already applied to %s", patch.name, path)
        return outcome(plan.status, describe_plan(file_diff, plan, self.options.dry_run), plan)

    def _record_event(self, outcome: ApplyOutcome) -> None:
        if self.options.events_file is None:
            return
        append_jsonl(
            self.options.events_file,
            {
                "run_id": self.run_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "event": "outcome",
                "outcome": outcome.model_dump(mode="json"),
            },
        )


def describe_plan(file_diff: FileDiff, plan: FilePlan, dry_run: bool = False) -> str:
    parts: list[str] = []
    if file_diff.is_new_file:
        parts.append("file created" if plan.status == ApplyStatus.APPLIED else "file already present")
    elif file_diff.is_deleted_file:
        parts.append("file deleted" if plan.status == ApplyStatus.APPLIED else "file already absent")
    else:
        parts.append(f"{plan.applied_count} of {len(plan.hunks)} hunks applied")
        if plan.already_applied_count:
            parts.append(f"{plan.already_applied_count} already applied")

    for hunk in plan.hunks:
        if hunk.offset:
            parts.append(f"hunk #{hunk.index} at offset {hunk.offset:+d}")
        if hunk.trimmed_context:
            parts.append(f"hunk #{hunk.index} ignored {hunk.trimmed_context} context lines")
        if hunk.mode == MatchMode.WHITESPACE:
            parts.append(f"hunk #{hunk.index} matched ignoring trailing whitespace")

    if dry_run:
        parts.append("dry run, nothing written")
    return "; ".join(parts)


def apply_all(
    patch_dir: Path,
    module_roots: Mapping[str, Path | str],
    options: ApplyOptions | None = None,
) -> Report:
    """
    Apply every patch file in ``patch_dir`` to the given module roots.

    This is the single entry point a build pipeline calls before compiling;
    it halts the build when ``Report.may_proceed`` is False.
    """

    return PatchSetOrchestrator(module_roots, options).run(Path(patch_dir))
