from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

DEV_NULL = "/dev/null"


class LineKind(StrEnum):
    CONTEXT = "context"
    ADD = "add"
    REMOVE = "remove"


class ApplyStatus(StrEnum):
    APPLIED = "Applied"
    ALREADY_APPLIED = "AlreadyApplied"
    CONTEXT_MISMATCH = "ContextMismatch"
    PATH_UNRESOLVED = "PathUnresolved"
    PARSE_ERROR = "ParseError"
    IO_ERROR = "IOError"
    EMPTY = "Empty"

    @property
    def blocks_build(self) -> bool:
        return self in BLOCKING_STATUSES


BLOCKING_STATUSES = frozenset(
    {
        ApplyStatus.CONTEXT_MISMATCH,
        ApplyStatus.PATH_UNRESOLVED,
        ApplyStatus.PARSE_ERROR,
        ApplyStatus.IO_ERROR,
    }
)


@dataclass(frozen=True)
class PatchFile:
    name: str
    path: Path

    @property
    def sequence_key(self) -> str:
        return self.name

    def sort_key(self) -> bytes:
        # Byte-wise ordering, independent of locale and directory listing order
        return self.sequence_key.encode("utf-8", "surrogateescape")


@dataclass(frozen=True)
class HunkLine:
    kind: LineKind
    text: str


@dataclass(frozen=True)
class Hunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: tuple[HunkLine, ...]
    section: str = ""
    old_missing_newline: bool = False
    new_missing_newline: bool = False

    @property
    def header(self) -> str:
        return f"@@ -{self.old_start},{self.old_count} +{self.new_start},{self.new_count} @@"

    def old_lines(self) -> list[str]:
        """Pre-image of the hunk: context and removed lines."""
        return [line.text for line in self.lines if line.kind != LineKind.ADD]

    def new_lines(self) -> list[str]:
        """Post-image of the hunk: context and added lines."""
        return [line.text for line in self.lines if line.kind != LineKind.REMOVE]


@dataclass(frozen=True)
class FileDiff:
    old_path: str
    new_path: str
    hunks: tuple[Hunk, ...] = field(default_factory=tuple)
    is_new_file: bool = False
    is_deleted_file: bool = False
    header_line: int = 0

    @property
    def path(self) -> str:
        """Declared path the engine resolves against the module roots."""
        if self.is_deleted_file or self.new_path == DEV_NULL:
            return self.old_path
        return self.new_path


@dataclass(frozen=True)
class ResolvedTarget:
    module: str
    module_root: Path
    relative_path: str
    absolute_path: Path


def reverse_hunk(hunk: Hunk) -> Hunk:
    swapped = {LineKind.ADD: LineKind.REMOVE, LineKind.REMOVE: LineKind.ADD}
    return Hunk(
        old_start=hunk.new_start,
        old_count=hunk.new_count,
        new_start=hunk.old_start,
        new_count=hunk.old_count,
        lines=tuple(HunkLine(swapped.get(line.kind, line.kind), line.text) for line in hunk.lines),
        section=hunk.section,
        old_missing_newline=hunk.new_missing_newline,
        new_missing_newline=hunk.old_missing_newline,
    )


def reverse_file_diff(file_diff: FileDiff) -> FileDiff:
    """Swap the roles of the two sides, undoing the diff when applied."""
    return FileDiff(
        old_path=file_diff.new_path,
        new_path=file_diff.old_path,
        hunks=tuple(reverse_hunk(h) for h in file_diff.hunks),
        is_new_file=file_diff.is_deleted_file,
        is_deleted_file=file_diff.is_new_file,
        header_line=file_diff.header_line,
    )
