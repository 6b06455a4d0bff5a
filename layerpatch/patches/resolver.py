import logging
from collections.abc import Mapping
from pathlib import Path, PurePosixPath

from layerpatch.patches.exceptions import PathUnresolvedError
from layerpatch.patches.models import FileDiff, ResolvedTarget

logger = logging.getLogger(__name__)

DIFF_PREFIXES = ("a/", "b/")


def strip_diff_prefix(path: str) -> str:
    """Drop the conventional ``a/``/``b/`` marker and any leading ``./``."""
    for prefix in DIFF_PREFIXES:
        if path.startswith(prefix):
            path = path[len(prefix):]
            break
    while path.startswith("./"):
        path = path[2:]
    return path


def normalize_module_name(name: str) -> str:
    parts = [part for part in name.replace("\\", "/").split("/") if part and part != "."]
    return "/".join(parts)


class ModuleResolver:
    """
    Maps the paths declared in a diff onto files inside configured module roots.

    Module names are matched against the leading path components of the
    declared path, the longest name winning. When no name matches, or the
    matched module lacks the file, the path is looked up under every module
    root instead and must be found in exactly one of them.
    """

    def __init__(
        self,
        module_roots: Mapping[str, Path | str],
        allow_symlinks: bool = False,
    ):
        self.allow_symlinks = allow_symlinks
        self._modules: list[tuple[str, str, Path]] = []
        for name, root in module_roots.items():
            prefix = normalize_module_name(name)
            if not prefix:
                logger.warning("Ignoring module with empty name mapped to %s", root)
                continue
            self._modules.append((name, prefix, Path(root).expanduser().resolve()))
        self._modules.sort(key=lambda m: m[0])

    @property
    def module_names(self) -> list[str]:
        return [name for name, _, _ in self._modules]

    def resolve(self, file_diff: FileDiff) -> ResolvedTarget:
        declared = file_diff.path

        if not file_diff.is_new_file and not file_diff.is_deleted_file:
            old_relative = strip_diff_prefix(file_diff.old_path)
            new_relative = strip_diff_prefix(file_diff.new_path)
            if old_relative != new_relative:
                raise PathUnresolvedError(
                    declared, f"renames are not supported ({old_relative} -> {new_relative})"
                )

        relative = strip_diff_prefix(declared)
        parts = PurePosixPath(relative).parts
        if not relative or PurePosixPath(relative).is_absolute() or ".." in parts:
            raise PathUnresolvedError(declared, "path is empty, absolute or escapes its module")

        matches = self._prefix_matches(relative)
        if len(matches) > 1:
            names = ", ".join(name for name, _, _ in matches)
            raise PathUnresolvedError(
                declared, f"ambiguous module prefix {matches[0][1]!r} configured as: {names}"
            )

        if matches:
            name, prefix, root = matches[0]
            remainder = relative[len(prefix):].lstrip("/")
            if not remainder:
                raise PathUnresolvedError(declared, f"path names module {name!r} itself, not a file")
            target = self._target(declared, name, root, remainder)

            if file_diff.is_new_file:
                if not root.is_dir():
                    raise PathUnresolvedError(declared, f"module root {root} does not exist")
                logger.debug("Resolved new file %s -> %s", declared, target.absolute_path)
                return target

            if target.absolute_path.is_file():
                logger.debug("Resolved %s -> %s", declared, target.absolute_path)
                return target

            fallback = self._search_roots(declared, relative)
            if fallback is not None:
                return fallback
            if file_diff.is_deleted_file and root.is_dir():
                # Gone already; the applier reports it as AlreadyApplied
                return target
            raise PathUnresolvedError(
                declared, f"{remainder} does not exist in module {name!r} ({root})"
            )

        if file_diff.is_new_file:
            raise PathUnresolvedError(declared, "no configured module matches the path of a new file")

        fallback = self._search_roots(declared, relative)
        if fallback is not None:
            return fallback
        raise PathUnresolvedError(declared, "no configured module contains this path")

    def _prefix_matches(self, relative: str) -> list[tuple[str, str, Path]]:
        matches = [
            module
            for module in self._modules
            if relative == module[1] or relative.startswith(module[1] + "/")
        ]
        if not matches:
            return []
        longest = max(len(prefix) for _, prefix, _ in matches)
        return [module for module in matches if len(module[1]) == longest]

    def _search_roots(self, declared: str, relative: str) -> ResolvedTarget | None:
        hits: list[ResolvedTarget] = []
        for name, _, root in self._modules:
            if (root / relative).is_file():
                hits.append(self._target(declared, name, root, relative))
        if len(hits) > 1:
            names = ", ".join(hit.module for hit in hits)
            raise PathUnresolvedError(declared, f"ambiguous: file exists in modules {names}")
        if hits:
            logger.debug("Resolved %s by root search -> %s", declared, hits[0].absolute_path)
            return hits[0]
        return None

    def _target(self, declared: str, name: str, root: Path, relative: str) -> ResolvedTarget:
        candidate = (root / relative).resolve()
        if not candidate.is_relative_to(root):
            logger.warning("Path escape attempt: %s is not relative to %s", candidate, root)
            raise PathUnresolvedError(declared, f"resolves outside module root {root}")

        if not self.allow_symlinks:
            path_so_far = root
            for part in PurePosixPath(relative).parts:
                path_so_far = path_so_far / part
                if path_so_far.is_symlink():
                    logger.warning("Symlink blocked: %s", path_so_far)
                    raise PathUnresolvedError(declared, f"path contains symlink {path_so_far}")

        return ResolvedTarget(
            module=name,
            module_root=root,
            relative_path=candidate.relative_to(root).as_posix(),
            absolute_path=candidate,
        )
