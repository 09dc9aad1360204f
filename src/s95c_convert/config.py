"""Configuration loading, merging, and validation."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from s95c_convert.errors import ConfigurationError
from s95c_convert.logging_setup import LOG_LEVELS
from s95c_convert.scanner import is_nested, same_path

MIN_PARALLEL = 1
MAX_PARALLEL = 64


@dataclass(frozen=True)
class ConverterConfig:
    """Immutable configuration for a conversion run."""

    source_root: Path
    dest_root: Path
    recurse: bool = False
    max_parallel: int = 2
    overwrite: bool = False
    encode_timeout_minutes: float = 0
    log_level: str = "INFO"
    sweep_temp_files: bool = True

    @property
    def encode_timeout_secs(self) -> float | None:
        """Encode timeout in seconds, or None for no limit."""
        if self.encode_timeout_minutes > 0:
            return self.encode_timeout_minutes * 60
        return None


_DEFAULTS: dict[str, Any] = {
    "source_root": ".",
    "dest_root": "./S95C_Converted",
    "recurse": False,
    "max_parallel": 2,
    "overwrite": False,
    "encode_timeout_minutes": 0,
    "log_level": "INFO",
    "sweep_temp_files": True,
}


def load_config(path: Path) -> dict[str, Any]:
    """Read a TOML config file and return a dict."""
    with path.open("rb") as f:
        try:
            return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid config file {path}: {e}") from e


def merge_config(
    file_config: dict[str, Any],
    cli_overrides: dict[str, Any],
) -> ConverterConfig:
    """Merge defaults, file config, and CLI overrides into a validated config.

    Priority: defaults < file config < CLI overrides. Unknown keys in the
    file are ignored. The destination root is created only once every
    check has passed.
    """
    merged: dict[str, Any] = {**_DEFAULTS}
    merged.update({k: v for k, v in file_config.items() if k in _DEFAULTS and v is not None})
    merged.update({k: v for k, v in cli_overrides.items() if v is not None})

    merged["source_root"] = Path(merged["source_root"]).absolute()
    merged["dest_root"] = Path(merged["dest_root"]).absolute()

    return _validate(merged)


def _validate(merged: dict[str, Any]) -> ConverterConfig:
    """Validate the merged config and return a ConverterConfig."""
    errors: list[str] = []

    source_root: Path = merged["source_root"]
    dest_root: Path = merged["dest_root"]
    recurse = bool(merged["recurse"])

    try:
        max_parallel = int(merged["max_parallel"])
    except (TypeError, ValueError):
        max_parallel = 0
    if not MIN_PARALLEL <= max_parallel <= MAX_PARALLEL:
        errors.append(
            f"max_parallel must be between {MIN_PARALLEL} and {MAX_PARALLEL} "
            f"(got {merged['max_parallel']})"
        )

    try:
        timeout = float(merged["encode_timeout_minutes"])
    except (TypeError, ValueError):
        timeout = -1
    if timeout < 0:
        errors.append(
            f"encode_timeout_minutes must be >= 0 (got {merged['encode_timeout_minutes']})"
        )

    log_level = str(merged["log_level"]).upper()
    if log_level not in LOG_LEVELS:
        errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)} (got {merged['log_level']})")

    if not source_root.is_dir():
        errors.append(f"source_root does not exist or is not a directory: {source_root}")
    elif same_path(source_root, dest_root):
        errors.append(f"dest_root must differ from source_root: {dest_root}")
    elif recurse and is_nested(dest_root, source_root):
        errors.append(
            f"dest_root {dest_root} is inside source_root {source_root}; "
            "not allowed with recursive scanning"
        )

    if errors:
        raise ConfigurationError("Configuration errors:\n  " + "\n  ".join(errors))

    try:
        dest_root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"Cannot create dest_root: {dest_root}") from e

    return ConverterConfig(
        source_root=source_root,
        dest_root=dest_root,
        recurse=recurse,
        max_parallel=max_parallel,
        overwrite=bool(merged["overwrite"]),
        encode_timeout_minutes=timeout,
        log_level=log_level,
        sweep_temp_files=bool(merged["sweep_temp_files"]),
    )
