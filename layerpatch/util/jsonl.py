import json
import logging
import os
import sys
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from filelock import FileLock

logger = logging.getLogger(__name__)


def append_jsonl(path: Path, record: dict[str, Any] | str) -> bool:
    """
    Append one record (dict or pre-serialised JSON) to a JSONL file.

    The write happens under a FileLock next to the file and is fsynced, so
    concurrent writers never interleave partial lines.

    Returns:
        True if the record was written, False on an OS-level failure.
    """

    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(record, str):
            json_line = record if record.endswith("\n") else record + "\n"
        else:
            json_line = json.dumps(record, sort_keys=True) + "\n"

        with FileLock(str(path) + ".lock"):
            with open(path, "ab") as f:
                f.write(json_line.encode("utf-8"))
                f.flush()
                os.fsync(f.fileno())
        return True

    except OSError as e:
        print(f"CRITICAL: Failed to write to {path}: {e}", file=sys.stderr)
        logger.critical("Failed to write JSONL record to %s: %s", path, e)
        return False


def read_jsonl(path: Path) -> Iterator[tuple[int, dict[str, Any] | None]]:
    """
    Yield ``(line_number, record)`` for every non-empty line.

    Malformed lines are logged and yielded with a None record so callers
    can count them.
    """

    with Path(path).open("r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Line %d of %s could not be read: %s", line_number, path, e)
                yield line_number, None
                continue
            if not isinstance(record, dict):
                logger.warning("Line %d of %s is not a JSON object", line_number, path)
                yield line_number, None
                continue
            yield line_number, record
