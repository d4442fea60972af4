from __future__ import annotations

from pathlib import Path

from tests.source_helpers import dedent_source
from exec_pin.mapping_table import MappingTable, render_table
from exec_pin.transform.rewriter import compute_identifier, transform_source

EXAMPLE = dedent_source(
    """
    from remote_exec import remote_exec

    remote_exec(lambda: 1 + 1, [])
    """
)


def _build(sources: dict[str, str], options) -> tuple[dict[str, str], MappingTable]:
    table = MappingTable.load(options.id_mappings.output_path)
    outputs = {}
    for path, source in sources.items():
        outputs[path] = transform_source(source, options, table, path=path).source
        table.persist()
    return outputs, table


def test_example_scenario(make_options, table_path: Path) -> None:
    options = make_options()
    ident = compute_identifier("lambda: 1 + 1")
    outputs, _ = _build({"app.py": EXAMPLE}, options)
    expected = dedent_source(
        f"""
        from remote_exec import remote_exec

        remote_exec({{"id": "{ident}"}}, [])
        """
    )
    assert outputs["app.py"] == expected
    table_text = table_path.read_text(encoding="utf-8")
    assert table_text == render_table({ident: "lambda: 1 + 1"})

    again, table = _build({"app.py": EXAMPLE}, options)
    assert again["app.py"] == expected
    assert table_path.read_text(encoding="utf-8") == table_text
    assert table.added == []


def test_compilation_is_deterministic(make_options, tmp_path: Path) -> None:
    source = dedent_source(
        """
        import remote_exec as rt

        def handler(request):
            return rt.remote_exec(
                lambda user_id: {"id": user_id, "name": "n"},
                [request.user_id],
            )
        """
    )
    first = transform_source(source, make_options(), MappingTable(tmp_path / "one.py"))
    second = transform_source(source, make_options(), MappingTable(tmp_path / "two.py"))
    assert first.source == second.source
    assert first.entries == second.entries


def test_identical_fragments_across_files_produce_one_entry(make_options) -> None:
    options = make_options()
    other = dedent_source(
        """
        from remote_exec import remote_exec as call_server

        value = call_server(lambda: 1 + 1, [])
        """
    )
    outputs, table = _build({"a.py": EXAMPLE, "b.py": other}, options)
    ident = compute_identifier("lambda: 1 + 1")
    assert len(table) == 1
    assert f'"{ident}"' in outputs["a.py"]
    assert f'"{ident}"' in outputs["b.py"]


def test_previous_entries_are_never_pruned(make_options, table_path: Path) -> None:
    options = make_options()
    _build({"old.py": EXAMPLE}, options)
    old_ident = compute_identifier("lambda: 1 + 1")
    newer = dedent_source(
        """
        from remote_exec import remote_exec

        remote_exec(lambda: 2 + 2, [])
        """
    )
    _, table = _build({"new.py": newer}, options)
    new_ident = compute_identifier("lambda: 2 + 2")
    reloaded = MappingTable.load(table_path)
    assert reloaded.snapshot() == {old_ident: "lambda: 1 + 1", new_ident: "lambda: 2 + 2"}
    assert table.loaded == frozenset({old_ident})


def test_build_order_does_not_change_table(make_options, tmp_path: Path) -> None:
    sources = {
        f"mod_{index}.py": dedent_source(
            f"""
            from remote_exec import remote_exec

            remote_exec(lambda: {index}, [])
            """
        )
        for index in range(4)
    }
    forward = make_options()
    _, table_a = _build(sources, forward)
    text_a = forward.id_mappings.output_path.read_text(encoding="utf-8")
    forward.id_mappings.output_path.unlink()
    _, table_b = _build(dict(reversed(list(sources.items()))), forward)
    assert forward.id_mappings.output_path.read_text(encoding="utf-8") == text_a
    assert table_a.snapshot() == table_b.snapshot()


def test_disabled_id_mappings_write_no_table(make_options, table_path: Path) -> None:
    result = transform_source(EXAMPLE, make_options(id_mappings=False))
    assert result.source == EXAMPLE
    assert not table_path.exists()


def test_round_trip_through_persisted_table(make_options, runtime_stub) -> None:
    source = dedent_source(
        """
        from remote_exec import remote_exec

        total = remote_exec(lambda a, b: a + b, [20, 22])
        modules = remote_exec(lambda name: __import__(name).__name__, ["json"])
        """
    )
    expected: dict[str, object] = {}
    exec(compile(source, "<original>", "exec"), expected)
    options = make_options(eval_require=True)
    outputs, table = _build({"app.py": source}, options)
    assert len(table) == 2
    namespace: dict[str, object] = {}
    exec(compile(outputs["app.py"], "<rewritten>", "exec"), namespace)
    assert namespace["total"] == expected["total"] == 42
    assert namespace["modules"] == expected["modules"] == "json"


def test_round_trip_with_eval_require_only(make_options, runtime_stub) -> None:
    source = dedent_source(
        """
        import importlib
        from remote_exec import remote_exec

        sep = remote_exec(lambda: importlib.import_module("os.path").sep, [])
        """
    )
    result = transform_source(source, make_options(id_mappings=False, eval_require=True))
    assert "importlib.import_module(" not in result.source.split("\n", 3)[3]
    namespace: dict[str, object] = {}
    exec(compile(result.source, "<rewritten>", "exec"), namespace)
    import os

    assert namespace["sep"] == os.path.sep
