import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from layerpatch.patches.matcher import DEFAULT_FUZZ_WINDOW, MatchOptions

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "layerpatch.yaml"
DEFAULT_SUFFIXES = (".patch", ".diff")
DEFAULT_WORKERS = 4


class ConfigError(Exception):
    def __init__(self, message: str, path: Path | None = None):
        if path is not None:
            message = f"Invalid configuration ({path}): {message}"
        super().__init__(message)
        self.path = path


class ApplyOptions(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
    )

    allow_empty: bool = False
    whitespace_fix: bool = False
    strict: bool = False
    dry_run: bool = False
    fuzz_window: int = Field(default=DEFAULT_FUZZ_WINDOW, ge=0)
    context_fuzz: int = Field(default=0, ge=0)
    workers: int = Field(default=DEFAULT_WORKERS, ge=1)
    suffixes: list[str] = Field(default_factory=lambda: list(DEFAULT_SUFFIXES))
    events_file: Path | None = None
    lock_dir: Path | None = None

    def match_options(self) -> MatchOptions:
        return MatchOptions(
            fuzz_window=self.fuzz_window,
            context_fuzz=self.context_fuzz,
            whitespace_fix=self.whitespace_fix,
        )


class LayerpatchConfig(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
    )

    patch_dir: Path | None = None
    modules: dict[str, Path] = Field(default_factory=dict)
    options: ApplyOptions = Field(default_factory=ApplyOptions)
    source_path: Path | None = None


def env_truthy(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes", "on")


def strict_from_env() -> bool:
    return env_truthy("LAYERPATCH_STRICT")


def load_config(path: Path) -> LayerpatchConfig:
    """
    Load a YAML configuration file.

    Relative ``patch_dir``, module roots and ``options.events_file`` are
    resolved against the directory holding the file.
    """

    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError("file not found", path) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"not valid YAML: {e}", path) from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("root must be a mapping", path)

    try:
        config = LayerpatchConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(str(e), path) from e

    base = path.parent.resolve()
    config.source_path = path
    if config.patch_dir is not None:
        config.patch_dir = _anchor(base, config.patch_dir)
    config.modules = {name: _anchor(base, root) for name, root in config.modules.items()}
    if config.options.events_file is not None:
        config.options.events_file = _anchor(base, config.options.events_file)

    logger.debug("Loaded configuration %s with %d modules", path, len(config.modules))
    return config


def _anchor(base: Path, value: Path) -> Path:
    value = Path(value).expanduser()
    return value if value.is_absolute() else base / value


def parse_module_specs(specs: list[str]) -> dict[str, Path]:
    """Parse ``NAME=ROOT`` command-line module mappings."""
    modules: dict[str, Path] = {}
    for mapping in specs:
        name, sep, root = mapping.partition("=")
        name = name.strip()
        root = root.strip()
        if not sep or not name or not root:
            raise ConfigError(f"module mapping must look like NAME=ROOT, got {mapping!r}")
        if name in modules:
            raise ConfigError(f"module {name!r} is mapped more than once")
        modules[name] = Path(root).expanduser()
    return modules
