"""CLI entry point for evm-sym."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .bytecode import Program
from .checks import EquivalenceReport, Verdict, ViolationReport
from .config import STORAGE_MODELS, Config, load_config
from .errors import EvmSymError, MalformedBytecode
from .logs import setup_logging
from .report.generator import ReportGenerator
from .runner import Runner

console = Console()

EXIT_CODES = {Verdict.PROVED: 0, Verdict.FAILED: 1, Verdict.INCONCLUSIVE: 2}
EXIT_FATAL = 3

_KIND_COLORS = {
    "stop": "green",
    "return": "green",
    "revert": "yellow",
    "invalid": "red",
    "bound_reached": "magenta",
    "undecided": "magenta",
}


def _load_code(value: str, name: str) -> Program:
    """Bytecode from a file (hex text or raw bytes) or from a hex literal."""
    if not os.path.isfile(value):
        return Program.from_hex(value, name=name)
    path = Path(value)
    data = path.read_bytes()
    try:
        return Program.from_hex(data.decode("ascii"), name=path.stem)
    except (UnicodeDecodeError, MalformedBytecode):
        return Program.from_bytes(data, name=path.stem)


def _load_config(config_path: str | None, **overrides) -> Config:
    return load_config(config_path).replace(**overrides)


def _render_leaves(report: ViolationReport) -> None:
    failing = {id(f.leaf) for f in report.failures}
    table = Table(title="Explored Paths")
    table.add_column("Path", style="bold")
    table.add_column("Kind")
    table.add_column("Constraints", justify="right")
    table.add_column("Result")
    for leaf in report.leaves:
        color = _KIND_COLORS.get(leaf.kind.value, "white")
        result = "[red]FAIL[/]" if id(leaf) in failing else (leaf.reason or "-")
        table.add_row(leaf.label, f"[{color}]{leaf.kind.value}[/]", str(len(leaf.constraints)), result)
    console.print(table)


def _render_failures(report: ViolationReport) -> None:
    for failure in report.failures:
        console.print(f"[red]path {failure.leaf.label}: {failure.description}[/]")
        if failure.counterexample is not None:
            console.print(f"  counterexample: {failure.counterexample.describe()}", soft_wrap=True, markup=False)


def _render_discrepancies(report: EquivalenceReport) -> None:
    for d in report.discrepancies:
        console.print(f"[red]paths {d.leaf_a.label} / {d.leaf_b.label}: {d.description}[/]")
        if d.counterexample is not None:
            console.print(f"  counterexample: {d.counterexample.describe()}", soft_wrap=True, markup=False)


def _emit(report: ViolationReport | EquivalenceReport, name: str, fmt: str | None, output: str | None) -> None:
    if fmt is None:
        return
    gen = ReportGenerator(name)
    text = gen.to_json(report) if fmt == "json" else gen.to_markdown(report)
    if output:
        Path(output).write_text(text)
        console.print(f"[green]Report saved to {output}[/]")
    else:
        click.echo(text)


def _verdict_line(report: ViolationReport | EquivalenceReport) -> None:
    color = {Verdict.PROVED: "green", Verdict.FAILED: "red", Verdict.INCONCLUSIVE: "yellow"}[report.verdict]
    console.print(f"\n[bold {color}]{report.summary()}[/]")


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """Symbolic execution of EVM bytecode."""


@main.command()
@click.argument("code")
@click.option("--sig", "signature", type=str, default=None, help="Function signature, e.g. 'add(uint256,uint256)'")
@click.option("--max-iterations", type=int, default=None, help="Loop bound per branch location")
@click.option("--solver-timeout", "solver_timeout_ms", type=int, default=None, help="Per-query timeout (ms)")
@click.option("--storage-model", type=click.Choice(STORAGE_MODELS), default=None)
@click.option("--rpc-url", type=str, default=None, help="JSON-RPC endpoint for concrete storage and code")
@click.option("--get-models", is_flag=True, help="Attach a witness to every path")
@click.option("--first", "first_counterexample", is_flag=True, help="Stop at the first counterexample")
@click.option("--workers", type=int, default=None, help="Explore paths on this many threads")
@click.option("--format", "fmt", type=click.Choice(["json", "markdown"]), default=None)
@click.option("--output", "-o", type=click.Path(), help="Output file path")
@click.option("--config", "config_path", type=click.Path(exists=True), default=None, help="TOML configuration file")
@click.option("-v", "--verbose", count=True, help="-v for progress, -vv for solver detail")
def check(
    code: str,
    signature: str | None,
    max_iterations: int | None,
    solver_timeout_ms: int | None,
    storage_model: str | None,
    rpc_url: str | None,
    get_models: bool,
    first_counterexample: bool,
    workers: int | None,
    fmt: str | None,
    output: str | None,
    config_path: str | None,
    verbose: int,
) -> None:
    """Search CODE (hex or a file) for reachable assertion failures."""
    setup_logging(verbose)
    try:
        config = _load_config(
            config_path,
            signature=signature,
            max_iterations=max_iterations,
            solver_timeout_ms=solver_timeout_ms,
            storage_model=storage_model,
            rpc_url=rpc_url,
            get_models=get_models or None,
            first_counterexample=first_counterexample or None,
            workers=workers,
        )
        program = _load_code(code, "bytecode")
        console.print(f"[bold blue]evm-sym v{__version__}[/]")
        console.print(f"Checking: {program.name} ({len(program.code)} bytes, {len(program.instructions)} instructions)\n")
        with Runner(config) as runner:
            with console.status("[bold green]Running symbolic execution..."):
                report = runner.check(program)
    except EvmSymError as e:
        console.print(f"[red]{type(e).__name__}: {e}[/]")
        sys.exit(EXIT_FATAL)

    _render_leaves(report)
    _render_failures(report)
    _verdict_line(report)
    _emit(report, program.name, fmt, output)
    sys.exit(EXIT_CODES[report.verdict])


@main.command()
@click.argument("code_a")
@click.argument("code_b")
@click.option("--sig", "signature", type=str, default=None, help="Function signature shared by both programs")
@click.option("--max-iterations", type=int, default=None)
@click.option("--solver-timeout", "solver_timeout_ms", type=int, default=None)
@click.option("--storage-model", type=click.Choice(STORAGE_MODELS), default=None)
@click.option("--rpc-url", type=str, default=None)
@click.option("--first", "first_counterexample", is_flag=True, help="Stop at the first discrepancy")
@click.option("--format", "fmt", type=click.Choice(["json", "markdown"]), default=None)
@click.option("--output", "-o", type=click.Path(), help="Output file path")
@click.option("--config", "config_path", type=click.Path(exists=True), default=None)
@click.option("-v", "--verbose", count=True)
def equivalence(
    code_a: str,
    code_b: str,
    signature: str | None,
    max_iterations: int | None,
    solver_timeout_ms: int | None,
    storage_model: str | None,
    rpc_url: str | None,
    first_counterexample: bool,
    fmt: str | None,
    output: str | None,
    config_path: str | None,
    verbose: int,
) -> None:
    """Check that CODE_A and CODE_B behave identically on every input."""
    setup_logging(verbose)
    try:
        config = _load_config(
            config_path,
            signature=signature,
            max_iterations=max_iterations,
            solver_timeout_ms=solver_timeout_ms,
            storage_model=storage_model,
            rpc_url=rpc_url,
            first_counterexample=first_counterexample or None,
        )
        program_a = _load_code(code_a, "a")
        program_b = _load_code(code_b, "b")
        console.print(f"[bold blue]evm-sym v{__version__}[/]")
        console.print(f"Comparing: {program_a.name} and {program_b.name}\n")
        with Runner(config) as runner:
            with console.status("[bold green]Running symbolic execution..."):
                report = runner.equivalence(program_a, program_b)
    except EvmSymError as e:
        console.print(f"[red]{type(e).__name__}: {e}[/]")
        sys.exit(EXIT_FATAL)

    _render_discrepancies(report)
    _verdict_line(report)
    _emit(report, f"{program_a.name} vs {program_b.name}", fmt, output)
    sys.exit(EXIT_CODES[report.verdict])


@main.command()
@click.argument("code")
def disasm(code: str) -> None:
    """Print the instruction listing of CODE."""
    try:
        program = _load_code(code, "bytecode")
    except EvmSymError as e:
        console.print(f"[red]{type(e).__name__}: {e}[/]")
        sys.exit(EXIT_FATAL)
    click.echo(program.listing())


if __name__ == "__main__":
    main()
