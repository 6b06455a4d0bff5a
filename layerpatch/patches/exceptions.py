from layerpatch.patches.models import ApplyStatus


class PatchError(Exception):
    def __init__(
        self,
        status: ApplyStatus,
        message: str,
        details: dict | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.details = details or {}


class PatchParseError(PatchError):
    """Malformed unified diff; fatal for its patch file."""

    def __init__(
        self,
        message: str,
        line_number: int | None = None,
        byte_offset: int | None = None,
    ):
        location = []
        if line_number is not None:
            location.append(f"line {line_number}")
        if byte_offset is not None:
            location.append(f"byte {byte_offset}")
        if location:
            message = f"{message} ({', '.join(location)})"
        super().__init__(
            ApplyStatus.PARSE_ERROR,
            message,
            details={
                "line_number": line_number,
                "byte_offset": byte_offset,
            },
        )
        self.line_number = line_number
        self.byte_offset = byte_offset


class EmptyPatchError(PatchParseError):
    def __init__(self):
        super().__init__("patch contains no file diffs")


class PathUnresolvedError(PatchError):
    def __init__(
        self,
        declared_path: str,
        reason: str,
    ):
        super().__init__(
            ApplyStatus.PATH_UNRESOLVED,
            f"{declared_path}: {reason}",
            details={
                "declared_path": declared_path,
                "reason": reason,
            },
        )
        self.declared_path = declared_path
        self.reason = reason


class ContextMismatchError(PatchError):
    def __init__(
        self,
        message: str,
        hunk_index: int | None = None,
        line_number: int | None = None,
    ):
        super().__init__(
            ApplyStatus.CONTEXT_MISMATCH,
            message,
            details={
                "hunk_index": hunk_index,
                "line_number": line_number,
            },
        )
        self.hunk_index = hunk_index
        self.line_number = line_number


class PatchIOError(PatchError):
    def __init__(
        self,
        message: str,
        path: str | None = None,
    ):
        super().__init__(
            ApplyStatus.IO_ERROR,
            message,
            details={
                "path": path,
            },
        )
        self.path = path
