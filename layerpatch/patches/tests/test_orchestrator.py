import json
from pathlib import Path

import pytest

from layerpatch.config import ApplyOptions
from layerpatch.patches.models import ApplyStatus
from layerpatch.patches.orchestrator import apply_all, discover_patches
from layerpatch.reporting.summary import exit_code

FOO_SWIFT = """\
import Foundation

struct Foo {
    let limit = 10
}

struct Bar {
    let name = "bar"
}
"""

PATCH_A = """\
--- a/Loop/Foo.swift
+++ b/Loop/Foo.swift
@@ -3,3 +3,3 @@
 struct Foo {
-    let limit = 10
+    let limit = 25
 }
"""

PATCH_B = """\
--- a/Loop/Foo.swift
+++ b/Loop/Foo.swift
@@ -7,3 +7,3 @@
 struct Bar {
-    let name = "bar"
+    let name = "baz"
 }
"""

MISSING_MODULE_PATCH = """\
--- a/NotAModule/Thing.swift
+++ b/NotAModule/Thing.swift
@@ -1 +1 @@
-a
+b
"""

KIT_PATCH = """\
--- a/LoopKit/Kit.swift
+++ b/LoopKit/Kit.swift
@@ -1 +1 @@
-let kit = 1
+let kit = 2
"""


@pytest.fixture
def project(tmp_path: Path) -> dict:
    loop = tmp_path / "src" / "Loop"
    loopkit = tmp_path / "src" / "LoopKit"
    loop.mkdir(parents=True)
    loopkit.mkdir(parents=True)
    (loop / "Foo.swift").write_text(FOO_SWIFT)
    (loopkit / "Kit.swift").write_text("let kit = 1\n")
    patches = tmp_path / "patches"
    patches.mkdir()
    return {
        "root": tmp_path,
        "patches": patches,
        "modules": {"Loop": loop, "LoopKit": loopkit},
        "foo": loop / "Foo.swift",
        "kit": loopkit / "Kit.swift",
    }


def make_options(project: dict, **kwargs) -> ApplyOptions:
    return ApplyOptions(lock_dir=project["root"] / "locks", **kwargs)


class TestDiscoverPatches:
    """Tests for discover_patches."""

    def test_byte_order(self, tmp_path: Path):
        """Names sort by their bytes: digits, then upper case, then lower case."""
        for name in ["b.patch", "a.patch", "A.patch", "9.patch", "10.diff"]:
            (tmp_path / name).write_text("")

        names = [p.name for p in discover_patches(tmp_path, [".patch", ".diff"])]

        assert names == ["10.diff", "9.patch", "A.patch", "a.patch", "b.patch"]

    def test_skips_hidden_other_suffixes_and_directories(self, tmp_path: Path):
        (tmp_path / "01-fix.patch").write_text("")
        (tmp_path / ".02-hidden.patch").write_text("")
        (tmp_path / "README.md").write_text("")
        (tmp_path / "03-dir.patch").mkdir()

        names = [p.name for p in discover_patches(tmp_path, [".patch"])]

        assert names == ["01-fix.patch"]

    def test_missing_directory(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            discover_patches(tmp_path / "nope", [".patch"])


class TestApplyAll:
    """Tests for apply_all."""

    def test_loop_scenario_and_rerun(self, project: dict):
        """A patch for Loop/Foo.swift applies, and a second run reports AlreadyApplied."""
        (project["patches"] / "01-limit.patch").write_text(PATCH_A)
        options = make_options(project)

        first = apply_all(project["patches"], project["modules"], options)
        after_first = project["foo"].read_text()
        second = apply_all(project["patches"], project["modules"], options)

        assert [o.status for o in first.outcomes] == [ApplyStatus.APPLIED]
        assert first.outcomes[0].module == "Loop"
        assert first.outcomes[0].file_path == str(project["foo"].resolve())
        assert "let limit = 25" in after_first
        assert [o.status for o in second.outcomes] == [ApplyStatus.ALREADY_APPLIED]
        assert project["foo"].read_text() == after_first
        assert first.may_proceed and second.may_proceed
        assert exit_code(second) == 0

    def test_two_patches_on_one_file(self, project: dict):
        """Non-overlapping patches to the same file both apply, in order."""
        (project["patches"] / "02-b.patch").write_text(PATCH_B)
        (project["patches"] / "01-a.patch").write_text(PATCH_A)

        report = apply_all(project["patches"], project["modules"], make_options(project))

        assert [o.patch_file for o in report.outcomes] == ["01-a.patch", "02-b.patch"]
        assert [o.status for o in report.outcomes] == [ApplyStatus.APPLIED, ApplyStatus.APPLIED]
        content = project["foo"].read_text()
        assert "let limit = 25" in content
        assert 'let name = "baz"' in content

    def test_unresolved_path(self, project: dict):
        """An unknown module blocks the build; the other FileDiffs still apply."""
        (project["patches"] / "01-mixed.patch").write_text(MISSING_MODULE_PATCH + KIT_PATCH)

        report = apply_all(project["patches"], project["modules"], make_options(project))

        assert [o.status for o in report.outcomes] == [
            ApplyStatus.PATH_UNRESOLVED,
            ApplyStatus.APPLIED,
        ]
        assert report.outcomes[0].file_path == "b/NotAModule/Thing.swift"
        assert not report.may_proceed
        assert exit_code(report) == 1
        assert project["kit"].read_text() == "let kit = 2\n"

    def test_empty_patch_blocks_by_default(self, project: dict):
        (project["patches"] / "01-empty.patch").write_text("")

        report = apply_all(project["patches"], project["modules"], make_options(project))

        assert [o.status for o in report.outcomes] == [ApplyStatus.PARSE_ERROR]
        assert not report.may_proceed

    def test_allow_empty(self, project: dict):
        """With allow_empty an empty patch is counted but harmless."""
        (project["patches"] / "01-empty.patch").write_text("no diffs here\n")

        report = apply_all(project["patches"], project["modules"], make_options(project, allow_empty=True))

        assert [o.status for o in report.outcomes] == [ApplyStatus.EMPTY]
        assert report.counts[ApplyStatus.EMPTY] == 1
        assert report.may_proceed

    def test_parse_error_reported(self, project: dict):
        (project["patches"] / "01-bad.patch").write_text("--- a/Loop/Foo.swift\n+++ b/Loop/Foo.swift\n@@ -1,5 +1,5 @@\n x\n")

        report = apply_all(project["patches"], project["modules"], make_options(project))

        assert report.outcomes[0].status == ApplyStatus.PARSE_ERROR
        assert "line" in report.outcomes[0].detail
        assert project["foo"].read_text() == FOO_SWIFT

    def test_overlong_hunk_is_parse_error(self, project: dict):
        """A hunk with more lines than its header declares never applies partially."""
        overlong = PATCH_A + "+    let extra = 1\n"
        (project["patches"] / "01-overlong.patch").write_text(overlong)

        report = apply_all(project["patches"], project["modules"], make_options(project))

        assert [o.status for o in report.outcomes] == [ApplyStatus.PARSE_ERROR]
        assert "more lines than declared" in report.outcomes[0].detail
        assert not report.may_proceed
        assert project["foo"].read_text() == FOO_SWIFT

    def test_context_mismatch_leaves_file_untouched(self, project: dict):
        """A file whose second hunk fails keeps its original bytes."""
        bad_second = PATCH_A + '@@ -7,3 +7,3 @@\n struct Baz {\n-    let name = "bar"\n+    let name = "baz"\n }\n'
        (project["patches"] / "01-half.patch").write_text(bad_second)

        report = apply_all(project["patches"], project["modules"], make_options(project))

        assert report.outcomes[0].status == ApplyStatus.CONTEXT_MISMATCH
        assert "hunk #2" in report.outcomes[0].detail
        assert project["foo"].read_text() == FOO_SWIFT

    def test_soft_fail_continues(self, project: dict):
        """Without strict mode later patches still run after a failure."""
        (project["patches"] / "01-missing.patch").write_text(MISSING_MODULE_PATCH)
        (project["patches"] / "02-a.patch").write_text(PATCH_A)

        report = apply_all(project["patches"], project["modules"], make_options(project))

        assert [o.status for o in report.outcomes] == [
            ApplyStatus.PATH_UNRESOLVED,
            ApplyStatus.APPLIED,
        ]
        assert report.skipped_patches == []

    def test_strict_stops_after_first_failure(self, project: dict):
        """Strict mode skips the remaining patch files and keeps earlier work."""
        (project["patches"] / "01-kit.patch").write_text(KIT_PATCH)
        (project["patches"] / "02-missing.patch").write_text(MISSING_MODULE_PATCH)
        (project["patches"] / "03-a.patch").write_text(PATCH_A)

        report = apply_all(project["patches"], project["modules"], make_options(project, strict=True))

        assert [o.patch_file for o in report.outcomes] == ["01-kit.patch", "02-missing.patch"]
        assert report.skipped_patches == ["03-a.patch"]
        assert report.total_patches == 3
        assert project["kit"].read_text() == "let kit = 2\n"
        assert project["foo"].read_text() == FOO_SWIFT

    def test_strict_still_reports_later_parse_errors(self, project: dict):
        """After a strict stop, later files are parsed but never applied."""
        (project["patches"] / "01-missing.patch").write_text(MISSING_MODULE_PATCH)
        (project["patches"] / "02-bad.patch").write_text("--- a/Loop/Foo.swift\n+++ b/Loop/Foo.swift\n@@ -1,5 +1,5 @@\n-a\n")
        (project["patches"] / "03-a.patch").write_text(PATCH_A)

        report = apply_all(project["patches"], project["modules"], make_options(project, strict=True))

        assert [(o.patch_file, o.status) for o in report.outcomes] == [
            ("01-missing.patch", ApplyStatus.PATH_UNRESOLVED),
            ("02-bad.patch", ApplyStatus.PARSE_ERROR),
        ]
        assert report.skipped_patches == ["03-a.patch"]
        assert report.counts[ApplyStatus.PARSE_ERROR] == 1
        assert project["foo"].read_text() == FOO_SWIFT

    def test_dry_run_writes_nothing(self, project: dict):
        (project["patches"] / "01-a.patch").write_text(PATCH_A)

        report = apply_all(project["patches"], project["modules"], make_options(project, dry_run=True))

        assert report.dry_run
        assert report.outcomes[0].status == ApplyStatus.APPLIED
        assert "dry run" in report.outcomes[0].detail
        assert project["foo"].read_text() == FOO_SWIFT

    def test_offset_reported(self, project: dict):
        """A hunk found away from its declared line names its offset."""
        project["foo"].write_text("// header\n// header\n" + FOO_SWIFT)
        (project["patches"] / "01-a.patch").write_text(PATCH_A)

        report = apply_all(project["patches"], project["modules"], make_options(project))

        assert report.outcomes[0].status == ApplyStatus.APPLIED
        assert "offset +2" in report.outcomes[0].detail

    def test_creation_and_deletion(self, project: dict):
        patch = (
            "--- /dev/null\n+++ b/Loop/New.swift\n@@ -0,0 +1 @@\n+struct New {}\n"
            "--- a/LoopKit/Kit.swift\n+++ /dev/null\n@@ -1 +0,0 @@\n-let kit = 1\n"
        )
        (project["patches"] / "01-files.patch").write_text(patch)
        options = make_options(project)

        first = apply_all(project["patches"], project["modules"], options)
        second = apply_all(project["patches"], project["modules"], options)

        assert [o.status for o in first.outcomes] == [ApplyStatus.APPLIED, ApplyStatus.APPLIED]
        assert (project["modules"]["Loop"] / "New.swift").read_text() == "struct New {}\n"
        assert not project["kit"].exists()
        assert [o.status for o in second.outcomes] == [
            ApplyStatus.ALREADY_APPLIED,
            ApplyStatus.ALREADY_APPLIED,
        ]

    def test_outcomes_in_declaration_order_with_workers(self, project: dict):
        """Parallel groups still report in the order the patch declares them."""
        (project["patches"] / "01-both.patch").write_text(KIT_PATCH + PATCH_A + PATCH_B)

        report = apply_all(project["patches"], project["modules"], make_options(project, workers=4))

        assert [Path(o.file_path).name for o in report.outcomes] == ["Kit.swift", "Foo.swift", "Foo.swift"]
        assert all(o.status == ApplyStatus.APPLIED for o in report.outcomes)
        assert 'let name = "baz"' in project["foo"].read_text()

    def test_events_file(self, project: dict):
        """Every outcome is appended to the events file with the run id."""
        (project["patches"] / "01-a.patch").write_text(PATCH_A)
        (project["patches"] / "02-missing.patch").write_text(MISSING_MODULE_PATCH)
        events = project["root"] / "out" / "events.jsonl"

        report = apply_all(project["patches"], project["modules"], make_options(project, events_file=events))

        records = [json.loads(line) for line in events.read_text().splitlines()]
        assert [r["outcome"]["status"] for r in records] == ["Applied", "PathUnresolved"]
        assert {r["run_id"] for r in records} == {report.run_id}

    def test_counts_cover_every_status(self, project: dict):
        (project["patches"] / "01-a.patch").write_text(PATCH_A)

        report = apply_all(project["patches"], project["modules"], make_options(project))

        assert list(report.counts) == list(ApplyStatus)
        assert report.counts[ApplyStatus.APPLIED] == 1
        assert sum(report.counts.values()) == len(report.outcomes)
