import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field, replace
from enum import StrEnum

from layerpatch.patches.exceptions import ContextMismatchError
from layerpatch.patches.models import ApplyStatus, FileDiff, Hunk, HunkLine, LineKind

logger = logging.getLogger(__name__)

DEFAULT_FUZZ_WINDOW = 20


class MatchMode(StrEnum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    WHITESPACE = "whitespace"


@dataclass(frozen=True)
class MatchOptions:
    fuzz_window: int = DEFAULT_FUZZ_WINDOW
    context_fuzz: int = 0
    whitespace_fix: bool = False


@dataclass(frozen=True)
class HunkResult:
    index: int
    status: ApplyStatus
    position: int
    offset: int
    mode: MatchMode
    trimmed_context: int = 0


@dataclass
class FileText:
    lines: list[str]
    newline: str = "\n"
    final_newline: bool = True


@dataclass(frozen=True)
class FilePlan:
    """New content for one target, computed entirely in memory."""

    status: ApplyStatus
    content: str | None
    hunks: tuple[HunkResult, ...] = field(default_factory=tuple)

    @property
    def deletes_file(self) -> bool:
        return self.content is None

    @property
    def applied_count(self) -> int:
        return sum(1 for h in self.hunks if h.status == ApplyStatus.APPLIED)

    @property
    def already_applied_count(self) -> int:
        return sum(1 for h in self.hunks if h.status == ApplyStatus.ALREADY_APPLIED)


@dataclass(frozen=True)
class _Match:
    status: ApplyStatus
    position: int
    offset: int
    body: tuple[HunkLine, ...]
    mode: MatchMode
    trimmed_context: int = 0


def split_text(text: str) -> FileText:
    if not text:
        return FileText(lines=[])
    newline = "\r\n" if "\r\n" in text else "\n"
    lines = text.split(newline)
    final_newline = lines[-1] == ""
    if final_newline:
        lines.pop()
    return FileText(lines=lines, newline=newline, final_newline=final_newline)


def join_text(file_text: FileText) -> str:
    if not file_text.lines:
        return ""
    text = file_text.newline.join(file_text.lines)
    if file_text.final_newline:
        text += file_text.newline
    return text


def apply_file_diff(
    file_diff: FileDiff,
    current: str | None,
    options: MatchOptions | None = None,
) -> FilePlan:
    """
    Compute the outcome of one FileDiff against the current file content.

    Args:
        file_diff: Parsed diff for a single target file.
        current: Current text of the target, or None if it does not exist.
        options: Matching leniency.

    Returns:
        FilePlan whose ``content`` is the new text (None when the file
        must be removed) and whose status is APPLIED or ALREADY_APPLIED.

    Raises:
        ContextMismatchError: If any hunk cannot be placed. Nothing is
        returned in that case, so callers never see partial output.
    """

    options = options or MatchOptions()

    if file_diff.is_new_file:
        return _plan_creation(file_diff, current)

    if current is None:
        if file_diff.is_deleted_file:
            return FilePlan(status=ApplyStatus.ALREADY_APPLIED, content=None)
        raise ContextMismatchError(f"{file_diff.path}: target file does not exist")

    file_text = split_text(current)
    lines, results, final_newline = apply_hunks(file_text.lines, file_diff.hunks, options)

    if file_diff.is_deleted_file:
        if lines:
            raise ContextMismatchError(
                f"{file_diff.path}: {len(lines)} lines remain after removing the file's content"
            )
        return FilePlan(status=ApplyStatus.APPLIED, content=None, hunks=tuple(results))

    if all(r.status == ApplyStatus.ALREADY_APPLIED for r in results):
        return FilePlan(status=ApplyStatus.ALREADY_APPLIED, content=current, hunks=tuple(results))

    if final_newline is not None:
        file_text.final_newline = final_newline
    file_text.lines = lines
    content = join_text(file_text)
    if content == current:
        # Only possible for hunks whose images differ in nothing but the final newline
        already = tuple(replace(r, status=ApplyStatus.ALREADY_APPLIED) for r in results)
        return FilePlan(status=ApplyStatus.ALREADY_APPLIED, content=current, hunks=already)
    return FilePlan(status=ApplyStatus.APPLIED, content=content, hunks=tuple(results))


def _plan_creation(file_diff: FileDiff, current: str | None) -> FilePlan:
    lines: list[str] = []
    final_newline = True
    for hunk in file_diff.hunks:
        lines.extend(hunk.new_lines())
        final_newline = not hunk.new_missing_newline
    content = join_text(FileText(lines=lines, final_newline=final_newline))

    if current is None:
        results = tuple(
            HunkResult(index, ApplyStatus.APPLIED, 0, 0, MatchMode.EXACT)
            for index, _ in enumerate(file_diff.hunks, start=1)
        )
        return FilePlan(status=ApplyStatus.APPLIED, content=content, hunks=results)

    if split_text(current).lines == lines:
        results = tuple(
            HunkResult(index, ApplyStatus.ALREADY_APPLIED, 0, 0, MatchMode.EXACT)
            for index, _ in enumerate(file_diff.hunks, start=1)
        )
        return FilePlan(status=ApplyStatus.ALREADY_APPLIED, content=current, hunks=results)

    raise ContextMismatchError(f"{file_diff.path}: file to be created already exists with other content")


def apply_hunks(
    lines: Sequence[str],
    hunks: Sequence[Hunk],
    options: MatchOptions | None = None,
) -> tuple[list[str], list[HunkResult], bool | None]:
    """
    Apply hunks in order to a copy of ``lines``.

    Returns the new lines, one HunkResult per hunk, and the trailing-newline
    state requested by ``\\ No newline at end of file`` markers (None when
    unchanged). Raises ContextMismatchError on the first hunk that matches
    nowhere; ``lines`` itself is never modified.
    """

    options = options or MatchOptions()
    work = list(lines)
    results: list[HunkResult] = []
    final_newline: bool | None = None
    delta = 0
    drift = 0
    floor = 0

    for index, hunk in enumerate(hunks, start=1):
        expected_old = _anchor(hunk.old_start, hunk.old_count) + delta + drift
        expected_new = _anchor(hunk.new_start, hunk.new_count) + drift
        match = _locate(work, hunk, expected_old, expected_new, floor, options)
        if match is None:
            logger.debug("Hunk #%d %s matches nowhere near line %d", index, hunk.header, expected_old + 1)
            raise ContextMismatchError(
                f"hunk #{index} {hunk.header} does not match near line {expected_old + 1}",
                hunk_index=index,
                line_number=expected_old + 1,
            )

        if match.status == ApplyStatus.APPLIED:
            replacement = _replacement(work, match.body, match.position)
            old_length = sum(1 for line in match.body if line.kind != LineKind.ADD)
            work[match.position:match.position + old_length] = replacement
            floor = match.position + len(replacement)
            if hunk.new_missing_newline:
                final_newline = False
            elif hunk.old_missing_newline:
                final_newline = True
        else:
            floor = match.position + len(hunk.new_lines())

        drift += match.offset

        logger.debug(
            "Hunk #%d %s: %s at line %d (offset %d, %s)",
            index,
            hunk.header,
            match.status,
            match.position + 1,
            drift,
            match.mode,
        )
        results.append(
            HunkResult(
                index=index,
                status=match.status,
                position=match.position,
                offset=drift,
                mode=match.mode,
                trimmed_context=match.trimmed_context,
            )
        )
        delta += hunk.new_count - hunk.old_count

    return work, results, final_newline


def _anchor(start: int, count: int) -> int:
    # An empty side names the line after which content is inserted
    return start if count == 0 else start - 1


def _exact(line: str) -> str:
    return line


def _trailing_whitespace(line: str) -> str:
    return line.rstrip()


def _matches(
    work: Sequence[str],
    position: int,
    needle: Sequence[str],
    normalize: Callable[[str], str],
) -> bool:
    if position < 0 or position + len(needle) > len(work):
        return False
    return all(
        normalize(work[position + i]) == normalize(expected) for i, expected in enumerate(needle)
    )


def _offsets(window: int) -> Iterator[int]:
    # Nearest first; on equal distance the earlier position wins
    yield 0
    for distance in range(1, max(window, 0) + 1):
        yield -distance
        yield distance


def _locate(
    work: Sequence[str],
    hunk: Hunk,
    expected_old: int,
    expected_new: int,
    floor: int,
    options: MatchOptions,
) -> _Match | None:
    normalizers: list[tuple[Callable[[str], str], MatchMode | None]] = [(_exact, None)]
    if options.whitespace_fix:
        normalizers.append((_trailing_whitespace, MatchMode.WHITESPACE))

    for normalize, forced_mode in normalizers:
        match = _locate_full(work, hunk, expected_old, expected_new, floor, options, normalize, forced_mode)
        if match is not None:
            return match
        for trim in range(1, options.context_fuzz + 1):
            match = _locate_trimmed(work, hunk, expected_old, floor, options, normalize, forced_mode, trim)
            if match is not None:
                return match

    if not hunk.new_lines() and not _has_context(hunk.lines):
        # The removed lines are gone from the anchor, so nothing is left to remove
        position = min(max(expected_old, floor), len(work))
        return _Match(ApplyStatus.ALREADY_APPLIED, position, 0, hunk.lines, MatchMode.EXACT)
    return None


def _locate_full(
    work: Sequence[str],
    hunk: Hunk,
    expected_old: int,
    expected_new: int,
    floor: int,
    options: MatchOptions,
    normalize: Callable[[str], str],
    forced_mode: MatchMode | None,
) -> _Match | None:
    pre = hunk.old_lines()
    post = hunk.new_lines()
    check_post = bool(post) and post != pre
    # Without context there is nothing to confirm a shifted position
    window = options.fuzz_window if _has_context(hunk.lines) else 0

    for offset in _offsets(window):
        mode = forced_mode or (MatchMode.EXACT if offset == 0 else MatchMode.FUZZY)
        old_position = expected_old + offset
        new_position = expected_new + offset
        pre_hit = old_position >= floor and _matches(work, old_position, pre, normalize)
        post_hit = check_post and new_position >= floor and _matches(work, new_position, post, normalize)

        # When both images fit, the longer one is the stronger evidence
        if post_hit and (not pre_hit or len(post) > len(pre)):
            return _Match(ApplyStatus.ALREADY_APPLIED, new_position, offset, hunk.lines, mode)
        if pre_hit:
            return _Match(ApplyStatus.APPLIED, old_position, offset, hunk.lines, mode)
    return None


def _locate_trimmed(
    work: Sequence[str],
    hunk: Hunk,
    expected_old: int,
    floor: int,
    options: MatchOptions,
    normalize: Callable[[str], str],
    forced_mode: MatchMode | None,
    trim: int,
) -> _Match | None:
    leading = _leading_context(hunk.lines)
    trailing = _leading_context(tuple(reversed(hunk.lines)))
    has_changes = any(line.kind == LineKind.REMOVE for line in hunk.lines)

    best: _Match | None = None
    for lead in range(0, min(trim, options.context_fuzz, leading) + 1):
        tail = trim - lead
        if tail > min(options.context_fuzz, trailing):
            continue
        body = hunk.lines[lead:len(hunk.lines) - tail]
        pre = [line.text for line in body if line.kind != LineKind.ADD]
        if not has_changes and not any(line.kind == LineKind.CONTEXT for line in body):
            continue
        if not pre:
            continue
        for offset in _offsets(options.fuzz_window):
            position = expected_old + lead + offset
            if position < floor or not _matches(work, position, pre, normalize):
                continue
            candidate = _Match(
                ApplyStatus.APPLIED,
                position,
                offset,
                body,
                forced_mode or MatchMode.FUZZY,
                trimmed_context=trim,
            )
            if best is None or (abs(offset), position) < (abs(best.offset), best.position):
                best = candidate
            break
    return best


def _has_context(lines: Sequence[HunkLine]) -> bool:
    return any(line.kind == LineKind.CONTEXT for line in lines)


def _leading_context(lines: Sequence[HunkLine]) -> int:
    count = 0
    for line in lines:
        if line.kind != LineKind.CONTEXT:
            break
        count += 1
    return count


def _replacement(work: Sequence[str], body: Sequence[HunkLine], position: int) -> list[str]:
    """Post-image for a matched region; context keeps the file's own text."""
    out: list[str] = []
    cursor = position
    for line in body:
        if line.kind == LineKind.CONTEXT:
            out.append(work[cursor])
            cursor += 1
        elif line.kind == LineKind.REMOVE:
            cursor += 1
        else:
            out.append(line.text)
    return out
