"""Command-line option resolution that reports problems as values instead of exiting."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

__all__ = ["ParsedOptions", "OptionsError", "OptionsResult", "parse_options"]


@dataclass(frozen=True, slots=True)
class ParsedOptions:
    base_dir: Path
    config_file: Optional[Path] = None


@dataclass(frozen=True, slots=True)
class OptionsError:
    message: str
    exit_code: int = 2


OptionsResult = Union[ParsedOptions, OptionsError]


def parse_options(base_dir: Optional[str], config_file: Optional[str]) -> OptionsResult:
    if base_dir is None or not base_dir.strip():
        return OptionsError("Please provide the node base directory path (--base-dir)")
    base = Path(base_dir).expanduser()
    if base.exists() and not base.is_dir():
        return OptionsError(f"Base directory {base} is not a directory")

    config_path: Optional[Path] = None
    if config_file is not None:
        if not config_file.strip():
            return OptionsError("--config-file must not be empty")
        config_path = Path(config_file).expanduser()
        if not config_path.is_file():
            return OptionsError(f"Config file {config_path} does not exist")
    return ParsedOptions(base_dir=base, config_file=config_path)
