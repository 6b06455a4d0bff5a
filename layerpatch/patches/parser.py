import logging
import re

from layerpatch.patches.exceptions import EmptyPatchError, PatchParseError
from layerpatch.patches.models import DEV_NULL, FileDiff, Hunk, HunkLine, LineKind

logger = logging.getLogger(__name__)

HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@(.*)$")

_MARKERS = {
    " ": LineKind.CONTEXT,
    "+": LineKind.ADD,
    "-": LineKind.REMOVE,
}

_ESCAPES = {
    "a": 7,
    "b": 8,
    "t": 9,
    "n": 10,
    "v": 11,
    "f": 12,
    "r": 13,
    '"': 34,
    "\\": 92,
}


class _Lines:
    """Patch lines with their 1-based line numbers and byte offsets."""

    def __init__(self, text: str):
        self.lines: list[str] = []
        self.offsets: list[int] = []
        offset = 0
        raw_lines = text.split("\n")
        if raw_lines and raw_lines[-1] == "":
            raw_lines.pop()
        for raw in raw_lines:
            self.offsets.append(offset)
            offset += len(raw.encode("utf-8", "surrogateescape")) + 1
            self.lines.append(raw[:-1] if raw.endswith("\r") else raw)
        self.end_offset = offset

    def __len__(self) -> int:
        return len(self.lines)

    def __getitem__(self, index: int) -> str:
        return self.lines[index]

    def error(self, message: str, index: int) -> PatchParseError:
        if index >= len(self.lines):
            return PatchParseError(message, line_number=len(self.lines) + 1, byte_offset=self.end_offset)
        return PatchParseError(message, line_number=index + 1, byte_offset=self.offsets[index])


def parse_patch(data: bytes | str) -> list[FileDiff]:
    """
    Parse the text of one patch file into its file diffs.

    Args:
        data: Raw patch bytes (decoded as UTF-8) or already decoded text.

    Returns:
        FileDiffs in declaration order.

    Raises:
        PatchParseError: On any malformed construct, with line number and byte offset.
        EmptyPatchError: If the patch holds no file diffs at all.

    Text outside of file blocks (mail headers, commit messages, diffstats,
    ``diff --git``/``index`` lines) is ignored, so ``git format-patch``
    output is accepted as is.
    """

    lines = _Lines(_decode(data))
    file_diffs: list[FileDiff] = []
    pending_new = False
    pending_deleted = False

    i = 0
    while i < len(lines):
        line = lines[i]
        if line.startswith("--- ") and i + 1 < len(lines) and lines[i + 1].startswith("+++ "):
            file_diff, i = _parse_file_block(lines, i, pending_new, pending_deleted)
            file_diffs.append(file_diff)
            pending_new = False
            pending_deleted = False
            continue

        if line.startswith("diff --git "):
            pending_new = False
            pending_deleted = False
        elif line.startswith("new file mode"):
            pending_new = True
        elif line.startswith("deleted file mode"):
            pending_deleted = True
        elif line.startswith("@@ "):
            raise lines.error("hunk header outside of a file diff", i)
        i += 1

    if not file_diffs:
        raise EmptyPatchError()

    logger.debug("Parsed %d file diffs", len(file_diffs))
    return file_diffs


def _decode(data: bytes | str) -> str:
    if isinstance(data, str):
        text = data
    else:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PatchParseError(
                "patch is not valid UTF-8",
                line_number=data.count(b"\n", 0, exc.start) + 1,
                byte_offset=exc.start,
            ) from exc
    return text.removeprefix("\ufeff")


def _parse_file_block(
    lines: _Lines,
    start: int,
    pending_new: bool,
    pending_deleted: bool,
) -> tuple[FileDiff, int]:
    old_path = header_path(lines[start][4:])
    new_path = header_path(lines[start + 1][4:])

    if old_path == DEV_NULL and new_path == DEV_NULL:
        raise lines.error("both sides of the file header are /dev/null", start)
    if not old_path or not new_path:
        raise lines.error("file header without a path", start)

    is_new_file = old_path == DEV_NULL or pending_new
    is_deleted_file = new_path == DEV_NULL or pending_deleted
    if is_new_file and is_deleted_file:
        raise lines.error("file diff both creates and deletes its file", start)

    hunks: list[Hunk] = []
    i = start + 2
    while i < len(lines) and lines[i].startswith("@@"):
        header_index = i
        hunk, i = _parse_hunk(lines, i)
        if is_new_file and hunk.old_count != 0:
            raise lines.error("file creation hunk must not have pre-image lines", header_index)
        if is_deleted_file and hunk.new_count != 0:
            raise lines.error("file deletion hunk must not have post-image lines", header_index)
        hunks.append(hunk)

    if not hunks and not is_new_file:
        raise lines.error(f"no hunks for {new_path if new_path != DEV_NULL else old_path}", start)

    file_diff = FileDiff(
        old_path=old_path,
        new_path=new_path,
        hunks=tuple(hunks),
        is_new_file=is_new_file,
        is_deleted_file=is_deleted_file,
        header_line=start + 1,
    )
    return file_diff, i


def _parse_hunk(lines: _Lines, start: int) -> tuple[Hunk, int]:
    match = HUNK_HEADER_RE.match(lines[start])
    if not match:
        raise lines.error(f"malformed hunk header: {lines[start]!r}", start)

    old_start = int(match.group(1))
    old_count = int(match.group(2)) if match.group(2) is not None else 1
    new_start = int(match.group(3))
    new_count = int(match.group(4)) if match.group(4) is not None else 1
    section = match.group(5).strip()

    old_remaining = old_count
    new_remaining = new_count
    body: list[HunkLine] = []
    old_missing_newline = False
    new_missing_newline = False
    last_kind: LineKind | None = None

    i = start + 1
    while old_remaining > 0 or new_remaining > 0:
        if i >= len(lines):
            raise lines.error(
                f"hunk {lines[start]!r} truncated: {old_remaining} old and "
                f"{new_remaining} new lines missing",
                i,
            )
        line = lines[i]
        if _starts_file_block(lines, i):
            raise lines.error(
                f"hunk {lines[start]!r} truncated: {old_remaining} old and "
                f"{new_remaining} new lines missing",
                i,
            )

        if line.startswith("\\"):
            if last_kind is None:
                raise lines.error("'no newline' marker before any hunk line", i)
            old_missing_newline |= last_kind != LineKind.ADD
            new_missing_newline |= last_kind != LineKind.REMOVE
            i += 1
            continue

        if line == "":
            kind = LineKind.CONTEXT
            text = ""
        elif line[0] in _MARKERS:
            kind = _MARKERS[line[0]]
            text = line[1:]
        else:
            raise lines.error(f"unexpected line in hunk: {line[:60]!r}", i)

        if kind != LineKind.ADD:
            if old_remaining == 0:
                raise lines.error(f"hunk {lines[start]!r} has more old lines than declared", i)
            old_remaining -= 1
        if kind != LineKind.REMOVE:
            if new_remaining == 0:
                raise lines.error(f"hunk {lines[start]!r} has more new lines than declared", i)
            new_remaining -= 1

        body.append(HunkLine(kind, text))
        last_kind = kind
        i += 1

    while i < len(lines) and lines[i].startswith("\\"):
        if last_kind is None:
            raise lines.error("'no newline' marker in an empty hunk", i)
        old_missing_newline |= last_kind != LineKind.ADD
        new_missing_newline |= last_kind != LineKind.REMOVE
        i += 1

    if i < len(lines) and _is_hunk_content(lines, i):
        raise lines.error(f"hunk {lines[start]!r} has more lines than declared", i)

    hunk = Hunk(
        old_start=old_start,
        old_count=old_count,
        new_start=new_start,
        new_count=new_count,
        lines=tuple(body),
        section=section,
        old_missing_newline=old_missing_newline,
        new_missing_newline=new_missing_newline,
    )
    return hunk, i


def _starts_file_block(lines: _Lines, index: int) -> bool:
    # A "--- "/"+++ " pair followed by a hunk header is a new file block, not hunk content
    return (
        index + 2 < len(lines)
        and lines[index].startswith("--- ")
        and lines[index + 1].startswith("+++ ")
        and lines[index + 2].startswith("@@ ")
    )


def _is_hunk_content(lines: _Lines, index: int) -> bool:
    line = lines[index]
    if not line or line[0] not in _MARKERS:
        return False
    # Mail signature separator of git format-patch
    if line in ("--", "-- "):
        return False
    return not (line.startswith("--- ") and index + 1 < len(lines) and lines[index + 1].startswith("+++ "))


def header_path(raw: str) -> str:
    """Path from a ``---``/``+++`` header, without timestamp and quoting."""
    path = raw.split("\t", 1)[0].strip()
    if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
        return _unquote(path[1:-1])
    return path


def _unquote(value: str) -> str:
    out = bytearray()
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "\\" and i + 1 < len(value):
            octal = value[i + 1:i + 4]
            if len(octal) == 3 and all(c in "01234567" for c in octal):
                out.append(int(octal, 8) & 0xFF)
                i += 4
                continue
            if value[i + 1] in _ESCAPES:
                out.append(_ESCAPES[value[i + 1]])
                i += 2
                continue
        out.extend(ch.encode("utf-8", "surrogateescape"))
        i += 1
    return out.decode("utf-8", "surrogateescape")
