from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for _path in (ROOT, SRC):
    if str(_path) not in sys.path:
        sys.path.insert(0, str(_path))


import pytest

from exec_pin.config import CompileOptions, EvalRequireOptions, IdMappingOptions

_RUNTIME_STUB = '''
import runpy

TABLE = None


def remote_exec(fragment, args=(), **options):
    if isinstance(fragment, dict):
        fragments = runpy.run_path(str(TABLE))["FRAGMENTS"]
        fragment = fragments[fragment["id"]]
    return fragment(*args)
'''


@pytest.fixture
def table_path(tmp_path: Path) -> Path:
    return tmp_path / "exec_pin_mappings.py"


@pytest.fixture
def make_options(table_path: Path):
    def _make(*, id_mappings: bool = True, eval_require: bool = False, **extra) -> CompileOptions:
        return CompileOptions(
            eval_require=EvalRequireOptions(enabled=eval_require),
            id_mappings=IdMappingOptions(enabled=id_mappings, output_path=table_path),
            **extra,
        )

    return _make


@pytest.fixture
def runtime_stub(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, table_path: Path):
    """Importable ``remote_exec`` package that runs fragments or table entries."""
    runtime_dir = tmp_path / "runtime"
    runtime_dir.mkdir()
    (runtime_dir / "remote_exec.py").write_text(_RUNTIME_STUB, encoding="utf-8")
    monkeypatch.syspath_prepend(str(runtime_dir))
    monkeypatch.delitem(sys.modules, "remote_exec", raising=False)
    import remote_exec

    monkeypatch.setattr(remote_exec, "TABLE", table_path)
    return remote_exec
