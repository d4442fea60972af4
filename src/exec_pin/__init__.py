"""exec-pin package root."""

from exec_pin.config import CompileOptions, EvalRequireOptions, IdMappingOptions
from exec_pin.exceptions import (
    ExecPinError,
    MappingTableCorruptError,
    MappingTableError,
    MappingTableWriteError,
    SourceParseError,
)
from exec_pin.mapping_table import MappingTable
from exec_pin.transform import transform_module, transform_source

__all__ = [
    "__version__",
    "CompileOptions",
    "EvalRequireOptions",
    "ExecPinError",
    "IdMappingOptions",
    "MappingTable",
    "MappingTableCorruptError",
    "MappingTableError",
    "MappingTableWriteError",
    "SourceParseError",
    "transform_module",
    "transform_source",
]

__version__ = "0.1.0"
