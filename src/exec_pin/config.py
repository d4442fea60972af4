from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path
from typing import Mapping, TypeAlias
import tomllib

DEFAULT_CONFIG_NAME = "exec_pin.toml"
DEFAULT_OUTPUT_NAME = "exec_pin_mappings.py"
DEFAULT_HELPERS: tuple[str, ...] = ("remote_exec.remote_exec",)

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError:
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def compile_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    data = load_config(root=root, config_path=config_path)
    section = data.get("compile", {})
    return section if isinstance(section, dict) else {}


def _normalize_name_list(value: TomlValue) -> list[str]:
    items: list[str] = []
    if value is None:
        return items
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            if isinstance(item, str):
                items.extend([part.strip() for part in item.split(",") if part.strip()])
    return [item for item in items if item]


def _as_bool(value: TomlValue) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def merge_payload(payload: TomlTable, defaults: TomlTable) -> TomlTable:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged


@dataclass(frozen=True)
class EvalRequireOptions:
    enabled: bool = False


@dataclass(frozen=True)
class IdMappingOptions:
    enabled: bool = False
    output_path: Path = Path(DEFAULT_OUTPUT_NAME)


@dataclass(frozen=True)
class CompileOptions:
    """Per-build settings; shared unchanged by every file of the build."""

    eval_require: EvalRequireOptions = field(default_factory=EvalRequireOptions)
    id_mappings: IdMappingOptions = field(default_factory=IdMappingOptions)
    helpers: tuple[str, ...] = DEFAULT_HELPERS

    def __post_init__(self) -> None:
        helpers = tuple(dict.fromkeys(name.strip() for name in self.helpers if name.strip()))
        for name in helpers:
            module, _, attr = name.rpartition(".")
            if not module or not attr:
                raise ValueError(
                    f"helper {name!r} must be a dotted name such as 'package.function'"
                )
        object.__setattr__(self, "helpers", helpers)

    @classmethod
    def from_mapping(
        cls, section: Mapping[str, TomlValue], *, root: Path | None = None
    ) -> "CompileOptions":
        helpers = _normalize_name_list(section.get("helpers")) or list(DEFAULT_HELPERS)
        raw_output = section.get("output_path")
        output_path = Path(raw_output) if isinstance(raw_output, str) and raw_output else Path(
            DEFAULT_OUTPUT_NAME
        )
        if root is not None and not output_path.is_absolute():
            output_path = root / output_path
        return cls(
            eval_require=EvalRequireOptions(enabled=_as_bool(section.get("eval_require"))),
            id_mappings=IdMappingOptions(
                enabled=_as_bool(section.get("id_mappings")),
                output_path=output_path,
            ),
            helpers=tuple(helpers),
        )
