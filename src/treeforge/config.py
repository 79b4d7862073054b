"""
Configuration of the command line front end: a file of `key = value` lines, plus
`key=value` overrides given on the command line.
"""

import shlex
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from treeforge.exceptions import ConfigError

ConfigEntries = List[Tuple[str, str]]


def parse_config_lines(lines: Iterable[str]) -> ConfigEntries:
    """
    Parse `key = value` lines. Blank lines and `#` comments are skipped, values
    may be quoted.

    Raises
    ------
    ConfigError
        If a line has no `=` or an empty key
    """
    entries: ConfigEntries = []
    for lineno, line in enumerate(lines, 1):
        try:
            tokens = shlex.split(line, comments=True)
        except ValueError as e:
            raise ConfigError(f"line {lineno}: {e}") from e
        if not tokens:
            continue
        key, sep, value = " ".join(tokens).partition("=")
        key, value = key.strip(), value.strip()
        if not sep or not key:
            raise ConfigError(f"line {lineno}: expected `key = value`, got {line!r}")
        entries.append((key, value))
    return entries


def read_config(path: Union[str, Path]) -> ConfigEntries:
    try:
        with open(path) as f:
            return parse_config_lines(f)
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e


def parse_overrides(args: Sequence[str]) -> ConfigEntries:
    # Malformed overrides are ignored, as only `name=value` pairs are meaningful
    entries: ConfigEntries = []
    for arg in args:
        key, sep, value = arg.partition("=")
        if sep and key and value:
            entries.append((key, value))
    return entries


class CLIParam:
    """
    Parameters of the command line program. Unknown keys are kept in cfg and
    otherwise ignored; later entries override earlier ones.
    """

    format: Optional[str]
    model_in: Optional[str]
    cfg: ConfigEntries

    FIELDS = ("format", "model_in")

    def __init__(self) -> None:
        self.format = None
        self.model_in = None
        self.cfg = []

    def configure(self, cfg: ConfigEntries) -> "CLIParam":
        self.cfg = list(cfg)
        for key, value in cfg:
            if key in self.FIELDS:
                setattr(self, key, value)
        for field in self.FIELDS:
            if not getattr(self, field):
                raise ConfigError(f"missing required parameter `{field}`")
        return self


def load_cli_param(
    config_path: Union[str, Path], overrides: Sequence[str] = ()
) -> CLIParam:
    cfg: ConfigEntries = [("seed", "0")]
    cfg.extend(read_config(config_path))
    cfg.extend(parse_overrides(overrides))
    return CLIParam().configure(cfg)
