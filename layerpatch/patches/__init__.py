from layerpatch.patches.exceptions import (
    ContextMismatchError,
    EmptyPatchError,
    PatchError,
    PatchIOError,
    PatchParseError,
    PathUnresolvedError,
)
from layerpatch.patches.matcher import (
    FilePlan,
    HunkResult,
    MatchMode,
    MatchOptions,
    apply_file_diff,
    apply_hunks,
)
from layerpatch.patches.models import (
    ApplyStatus,
    FileDiff,
    Hunk,
    HunkLine,
    LineKind,
    PatchFile,
    ResolvedTarget,
    reverse_file_diff,
)
from layerpatch.patches.parser import parse_patch
from layerpatch.patches.resolver import ModuleResolver

__all__ = [
    "ContextMismatchError",
    "EmptyPatchError",
    "PatchError",
    "PatchIOError",
    "PatchParseError",
    "PathUnresolvedError",
    "FilePlan",
    "HunkResult",
    "MatchMode",
    "MatchOptions",
    "apply_file_diff",
    "apply_hunks",
    "ApplyStatus",
    "FileDiff",
    "Hunk",
    "HunkLine",
    "LineKind",
    "PatchFile",
    "ResolvedTarget",
    "reverse_file_diff",
    "parse_patch",
    "ModuleResolver",
]
