from __future__ import annotations

from pathlib import Path
from typing import Iterator, List, Optional

import typer

from exec_pin.config import CompileOptions, compile_defaults, merge_payload
from exec_pin.exceptions import ExecPinError
from exec_pin.mapping_table import MappingTable, TableState
from exec_pin.transform import transform_source

app = typer.Typer(add_completion=False)


def _resolve_options(
    *,
    root: Path,
    config: Optional[Path],
    helper: Optional[List[str]],
    eval_require: Optional[bool],
    id_mappings: Optional[bool],
    output_path: Optional[Path],
) -> CompileOptions:
    defaults = compile_defaults(root=root, config_path=config)
    payload = {
        "helpers": list(helper) if helper else None,
        "eval_require": eval_require,
        "id_mappings": id_mappings,
        "output_path": str(output_path) if output_path is not None else None,
    }
    try:
        return CompileOptions.from_mapping(merge_payload(payload, defaults), root=root)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _iter_sources(paths: List[Path], *, exclude: Path) -> Iterator[Path]:
    skip = exclude.resolve()
    seen: set[Path] = set()
    for path in paths:
        candidates = sorted(path.rglob("*.py")) if path.is_dir() else [path]
        for candidate in candidates:
            resolved = candidate.resolve()
            if resolved == skip or resolved in seen:
                continue
            seen.add(resolved)
            yield candidate


def _destination(path: Path, *, root: Path, out_dir: Path) -> Path:
    try:
        rel = path.resolve().relative_to(root.resolve())
    except ValueError:
        rel = Path(path.name)
    return out_dir / rel


def _compile_paths(
    paths: List[Path],
    *,
    root: Path,
    options: CompileOptions,
    out_dir: Optional[Path],
    in_place: bool,
) -> None:
    table: MappingTable | None = None
    if options.id_mappings.enabled:
        table = MappingTable.load(options.id_mappings.output_path)
    to_stdout = out_dir is None and not in_place
    for path in _iter_sources(paths, exclude=options.id_mappings.output_path):
        source = path.read_text(encoding="utf-8")
        result = transform_source(source, options, table, path=str(path))
        for warning in result.warnings:
            typer.echo(f"warning: {warning}", err=True)
        if to_stdout:
            typer.echo(result.source, nl=False)
        elif in_place:
            if result.changed:
                path.write_text(result.source, encoding="utf-8")
        else:
            destination = _destination(path, root=root, out_dir=out_dir)
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_text(result.source, encoding="utf-8")
        if table is not None:
            table.persist()
        typer.echo(
            f"{path}: {len(result.rewritten)} rewritten, {len(result.skipped)} skipped",
            err=to_stdout,
        )
    if table is not None:
        if table.state is not TableState.PERSISTED:
            table.persist()
        typer.echo(
            f"Wrote mapping table: {table.output_path} "
            f"({len(table)} entries, {len(table.added)} new)",
            err=to_stdout,
        )


@app.command("compile")
def compile_command(
    paths: List[Path] = typer.Argument(..., exists=True, help="Files or directories to compile."),
    root: Path = typer.Option(Path("."), "--root"),
    config: Optional[Path] = typer.Option(None, "--config"),
    out_dir: Optional[Path] = typer.Option(
        None, "--out-dir", help="Write rewritten sources under this directory."
    ),
    in_place: bool = typer.Option(False, "--in-place", help="Overwrite the input files."),
    helper: Optional[List[str]] = typer.Option(
        None, "--helper", help="Dotted name of a remote-execution helper (repeatable)."
    ),
    eval_require: Optional[bool] = typer.Option(None, "--eval-require/--no-eval-require"),
    id_mappings: Optional[bool] = typer.Option(None, "--id-mappings/--no-id-mappings"),
    output_path: Optional[Path] = typer.Option(
        None, "--output-path", help="Mapping table module to merge into."
    ),
) -> None:
    """Rewrite remote-execution call sites and update the mapping table."""
    if out_dir is not None and in_place:
        raise typer.BadParameter("--out-dir and --in-place are mutually exclusive")
    options = _resolve_options(
        root=root,
        config=config,
        helper=helper,
        eval_require=eval_require,
        id_mappings=id_mappings,
        output_path=output_path,
    )
    try:
        _compile_paths(paths, root=root, options=options, out_dir=out_dir, in_place=in_place)
    except ExecPinError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)


@app.command("show")
def show_command(
    root: Path = typer.Option(Path("."), "--root"),
    config: Optional[Path] = typer.Option(None, "--config"),
    output_path: Optional[Path] = typer.Option(None, "--output-path"),
) -> None:
    """List the identifiers recorded in the mapping table."""
    options = _resolve_options(
        root=root,
        config=config,
        helper=None,
        eval_require=None,
        id_mappings=None,
        output_path=output_path,
    )
    try:
        table = MappingTable.load(options.id_mappings.output_path)
    except ExecPinError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)
    for identifier in table:
        fragment = table.get(identifier) or ""
        first_line = fragment.splitlines()[0] if fragment else ""
        typer.echo(f"{identifier}  {first_line}")
    typer.echo(f"{len(table)} entries in {table.output_path}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
